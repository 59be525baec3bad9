"""Execution pipeline for the council runtime.

This package contains the core execution components:

- **engine**: Run driver (phases -> actions -> consolidation, retry, abort/pause)
- **actions**: Action-type handlers (standard, CRUD, RAG, gavel, system, ...)
- **participants**: Participant resolution (positions, teams, SMEs, characters)
- **orchestration**: Participant orchestration modes for standard actions
- **context**: Resolver scope assembly (token scopes + combined context)
- **routing**: Output routing and phase consolidation
- **deliberation**: Deliberative retrieval Q&A loop
- **workshop**: Character workshop choreographies
- **gavel**: Human-review gates
- **prompts**: Built-in prompt texts (Jinja2 templates)
- **services**: Collaborator bundle shared by the components above
"""
