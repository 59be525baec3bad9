"""Built-in prompt templates (Jinja2).

These prompts drive the engine's own multi-step protocols: phase synthesis,
dynamic character selection, deliberative Q&A, and the character workshop.
Pipeline authors' ``promptTemplate`` strings are resolved by
``TemplateResolver`` instead; Jinja2 is only used for the fixed texts here.

Template variables are documented next to each template.
"""

from __future__ import annotations

from typing import Any

import jinja2

_TEMPLATES: dict[str, str] = {
    # outputs: dict[action name, output]; instructions: str
    "phase_synthesis": """
Synthesize the following contributions into a single coherent result.
{% if instructions %}

{{ instructions }}
{% endif %}

{% for name, output in outputs.items() %}
### {{ name }}
{{ output }}

{% endfor %}
Provide only the synthesized result.
""",
    # characters: list[Agent]; input: str; max_characters: int; guidance: str
    "character_selection": """
You are selecting which characters should take part in the next step.

Task input:
{{ input }}

Available characters:
{% for agent in characters %}
- {{ agent.id }}: {{ agent.display_name }}{% if agent.character_type %} ({{ agent.character_type }}){% endif %}

{% endfor %}
Choose at most {{ max_characters }} characters that are most relevant.
Reply with a JSON array of character ids only, for example ["{{ characters[0].id if characters else 'char_id' }}"].
""",
    # input: str; history: list[dict(question, answer, round)]; stores: list[str]; round: int
    "deliberation_question": """
You are gathering information needed to complete the following task.

Task:
{{ input }}
{% if stores %}

Available stores: {{ stores | join(", ") }}
{% endif %}
{% if history %}

Questions asked so far:
{% for item in history %}
Q{{ loop.index }} (round {{ item.round }}): {{ item.question }}
A{{ loop.index }}: {{ item.answer }}
{% endfor %}
{% endif %}

Ask the single most useful next question for the record keepers.
If you already have sufficient information, reply "Information is sufficient" and ask no further questions.
""",
    # curation_prompt: str; question: str; retrieved: str
    "deliberation_answer": """
{{ curation_prompt }}

Question:
{{ question }}

Retrieved records:
{{ retrieved or "No relevant information found." }}

Answer the question using only the records above.
""",
    # input: str; history: list[dict]
    "deliberation_summary": """
Summarize what was learned for the following task.

Task:
{{ input }}

Deliberation log:
{% for item in history %}
Q: {{ item.question }}
A: {{ item.answer }}

{% endfor %}
Provide a concise, factual summary of the relevant information.
""",
    # input: str; characters: list[Agent]; instructions: str; references: str
    "workshop_briefing": """
You are directing a character workshop.
{% if instructions %}

{{ instructions }}
{% endif %}

Material:
{{ input }}
{% if references %}

Character references:
{{ references }}
{% endif %}

Give each of these characters a short note on how they should approach the material:
{% for agent in characters %}
- {{ agent.display_name }}
{% endfor %}
""",
    # name: str; input: str; notes: str; reference: str
    "workshop_draft": """
Material:
{{ input }}

Director's notes:
{{ notes }}
{% if reference %}

Your character reference:
{{ reference }}
{% endif %}

Respond as {{ name }}, in your own voice.
""",
    # drafts: list[dict(name, content)]; instructions: str
    "workshop_critique": """
Review each character's draft for voice and characterization.
{% if instructions %}

{{ instructions }}
{% endif %}

{% for draft in drafts %}
### {{ draft.name }}
{{ draft.content }}

{% endfor %}
Give specific, actionable feedback for each character by name.
""",
    # name: str; draft: str; feedback: str
    "workshop_revision": """
Your previous draft:
{{ draft }}

Director's feedback:
{{ feedback }}

Revise your draft as {{ name }}, keeping what works and fixing what the feedback identifies.
""",
    # name: str; input: str; reference: str; instructions: str
    "workshop_consistency_review": """
Check the following material for anything {{ name }} says or does that is out of character.
{% if instructions %}

{{ instructions }}
{% endif %}
{% if reference %}

Your character reference:
{{ reference }}
{% endif %}

Material:
{{ input }}

List each inconsistency with a suggested correction, or reply "Consistent" if there are none.
""",
    # input: str; reviews: list[dict(name, content)]
    "workshop_consistency_report": """
Compile the character consistency reviews below into a single report for the material.

Material:
{{ input }}

{% for review in reviews %}
### {{ review.name }}
{{ review.content }}

{% endfor %}
""",
    # input: str; characters: list[Agent]; instructions: str
    "workshop_scene": """
Set up a collaborative scene for these characters:
{% for agent in characters %}
- {{ agent.display_name }}
{% endfor %}
{% if instructions %}

{{ instructions }}
{% endif %}

Material:
{{ input }}

Describe the situation the characters are responding to and what the scene should achieve.
""",
    # name: str; scene: str; transcript: list[dict(name, content)]
    "workshop_turn": """
Scene:
{{ scene }}
{% if transcript %}

Conversation so far:
{% for line in transcript %}
[{{ line.name }}]: {{ line.content }}
{% endfor %}
{% endif %}

Continue the scene as {{ name }}.
""",
    # input: str; mode: str; transcript: list[dict(name, content)]
    "workshop_synthesis": """
Synthesize the results of this {{ mode }} workshop into a final version of the material.

Original material:
{{ input }}

Workshop transcript:
{% for line in transcript %}
[{{ line.name }}]: {{ line.content }}
{% endfor %}

Provide only the final material.
""",
}

_env = jinja2.Environment(  # noqa: S701
    loader=jinja2.DictLoader(_TEMPLATES),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=jinja2.StrictUndefined,
)


def render_prompt(template_name: str, /, **variables: Any) -> str:
    """Render a built-in prompt by name.

    Raises ``jinja2.TemplateNotFound`` for unknown names and
    ``jinja2.UndefinedError`` when a variable is missing.
    """
    return _env.get_template(template_name).render(**variables).strip()


def prompt_names() -> list[str]:
    return sorted(_TEMPLATES)
