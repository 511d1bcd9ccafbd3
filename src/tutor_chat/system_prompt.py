from __future__ import annotations

from tutor_chat.models import LearningObjective

TUTOR_POLICY = """\
You are an AI tutor for undergraduate engineering students. Help students understand \
course concepts by connecting their questions to the provided course materials.

Course materials arrive inside <course_materials>...</course_materials> tags. Use them \
as context only and never repeat the tags in a reply.

Teaching approach:
- Use the Socratic method. Ask exactly one question at a time and wait for the answer.
- Build each question on the student's previous answer and acknowledge what they got right.
- Cite specific locations in the course materials (for example "Chapter 12.1").
- If the materials do not cover the question, say so and help from general knowledge.
- Prefer concrete numbers, worked scenarios and real engineering applications.

Formatting:
- Use HTML <ul>/<ol>/<li> tags for lists.
- Inline math uses $...$; display math uses $$ on its own lines.
- Diagrams use Mermaid inside <Artefact>...</Artefact> tags, with every node and edge label in double quotes.

After three to five exchanges on a topic, offer an Apply-level multiple choice practice \
question and do not reveal the answer until the student has tried it.\
"""

DEFAULT_GREETING = """\
Hello! I'm your virtual engineering tutor. I'm here to help you work through course \
concepts and problems with guided thinking rather than handing you the answers.

What would you like to discuss today? You can ask about a lecture topic, a worked \
example, or a problem you are stuck on.

Remember: I am designed to enhance your learning, not replace it. Always verify \
important information.\
"""


def format_struggle_topics(struggle_topics: list[str]) -> str:
    if not struggle_topics:
        return ""

    topic_list = ", ".join(struggle_topics)
    return (
        f"\n\nStudent struggles with: {topic_list}"
        f"\n\nIMPORTANT: When the student asks about any of these topics ({topic_list}), "
        "stop Socratic questioning and give a direct, clear explanation instead:"
        "\n- explain step by step"
        "\n- include at least one worked example with specific values"
        "\n- break complex ideas into simpler parts"
        "\n- you may finish with ONE question that checks understanding"
    )


def build_system_prompt(
    course_name: str | None = None,
    learning_objectives: list[LearningObjective] | None = None,
    struggle_topics: list[str] | None = None,
    *,
    base_prompt: str | None = None,
) -> str:
    prompt = base_prompt.strip() if base_prompt and base_prompt.strip() else TUTOR_POLICY

    if course_name:
        prompt += f"\n\nYou are currently helping with: {course_name}"

    if learning_objectives:
        lines = [
            "\n\n<course_learning_objectives>",
            "The following are ALL learning objectives for this course, by week/topic and item:",
            "",
        ]
        for index, objective in enumerate(learning_objectives, start=1):
            lines.append(f"{index}. [{objective.unit_title} - {objective.item_title}]: {objective.text}")
        lines.append("</course_learning_objectives>")
        lines.append("\nReference these learning objectives so that help stays aligned with course goals.")
        prompt += "\n".join(lines)

    if struggle_topics:
        prompt += format_struggle_topics(struggle_topics)

    return prompt


def build_greeting(selected_greeting: str | None = None) -> str:
    if selected_greeting and selected_greeting.strip():
        return selected_greeting.strip()
    return DEFAULT_GREETING
