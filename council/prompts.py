"""Prompt builders for every stage of the council."""

from collections.abc import Sequence
from string import Template

from council.models import (
    AggregateRank,
    ConversationEntry,
    CritiqueItem,
    Stage1Result,
    Stage2CustomResult,
    Stage2Result,
)
from council.ranking import RANKING_MARKER, LabelMap, build_label_map
from council.sections import describe_sections

COMPETE_PASS1_SECTIONS = ["executive_summary", "conflicts", "section_outlines"]
MERGE_PASS1_SECTIONS = ["merged_content", "unique_insights", "conflicts", "coverage_gaps"]
MERGE_PASS2_SECTIONS = ["final_content"]
DEFAULT_DETAIL_SECTION = "detailed_content"
RESOLVE_SECTIONS = ["revised_draft", "decisions"]

# Follow-up questions carry at most this many earlier exchanges
MAX_HISTORY_ENTRIES = 5


def substitute(template: str, **values: str) -> str:
    """Fill ``${NAME}`` placeholders, leaving unknown ones untouched."""
    return Template(template).safe_substitute(**values)


def _response_text(result: Stage1Result, use_summaries: bool) -> str:
    if use_summaries and result.summary:
        return result.summary
    return result.response


def _output_format_block(output_format: str | None) -> str:
    if not output_format:
        return ""
    return f"\n\n## Output Format\n\n{output_format.strip()}"


def build_question_with_history(question: str, history: Sequence[ConversationEntry]) -> str:
    """Prefix a follow-up question with the most recent earlier exchanges."""
    if not history:
        return question
    exchanges = "\n".join(
        f"Q: {entry.question}\nA: {entry.stage3_response}\n" for entry in history[-MAX_HISTORY_ENTRIES:]
    )
    return f"Previous conversation:\n\n{exchanges}\nCurrent question: {question}"


def build_stage1_prompt(query: str, custom_prompt: str | None = None) -> str:
    """The responder prompt: the query itself, or a custom prompt.

    A custom prompt may reference the query as ``${QUERY}``; without the
    placeholder it is sent as-is.
    """
    if not custom_prompt:
        return query
    return substitute(custom_prompt, QUERY=query)


def format_responses_for_ranking(
    stage1: Sequence[Stage1Result],
    label_map: LabelMap,
) -> str:
    by_agent = {r.agent: r for r in stage1}
    parts = [f"{label}:\n{by_agent[agent].response}" for label, agent in label_map if agent in by_agent]
    return "\n\n".join(parts)


def build_ranking_prompt(
    query: str,
    stage1: Sequence[Stage1Result],
    label_map: LabelMap | None = None,
) -> str:
    """Ask an evaluator to rank anonymized responses.

    Agent names never appear in this prompt; only the labels do.
    """
    label_map = label_map or build_label_map(stage1)
    responses = format_responses_for_ranking(stage1, label_map)
    example = "\n".join(f"{i}. {label}" for i, label in enumerate(label_map.labels[:3], start=1))
    return f"""You are evaluating different responses to the following question.

Question: {query}

Here are the responses from different agents (anonymized):

{responses}

Your task:
1. Evaluate each response individually. Explain what it does well and what it does poorly,
   covering strengths and weaknesses, accuracy, and completeness.
2. Then, at the very end of your answer, provide your final ranking.

IMPORTANT: Your final ranking MUST be formatted EXACTLY as follows:
- Start with the line "{RANKING_MARKER}" (all caps, with colon)
- Then list the responses from best to worst as a numbered list
- Each line should be: number, period, space, then ONLY the response label

Example of the required format:

{RANKING_MARKER}
{example}

Now provide your evaluation and ranking:"""


def _format_stage1_block(stage1: Sequence[Stage1Result], use_summaries: bool) -> str:
    return "\n\n".join(
        f"Agent: {r.agent}\nResponse: {_response_text(r, use_summaries)}" for r in stage1
    )


def _format_stage2_block(stage2: Sequence[Stage2Result]) -> str:
    return "\n\n".join(f"Agent: {r.agent}\nRanking: {r.ranking_raw}" for r in stage2)


def _consolidation_block(consolidation: str | None, title: str) -> str:
    if consolidation is None:
        return ""
    return f"\n\n{title}:\n\n{consolidation}"


def _format_aggregate_block(aggregate: Sequence[AggregateRank] | None) -> str:
    if not aggregate:
        return ""
    lines = [
        f"{i}. {a.agent} (average rank {a.average_rank:.2f} from {a.rankings_count} rankings)"
        for i, a in enumerate(aggregate, start=1)
    ]
    return "\n\nAGGREGATE RANKING (best first):\n" + "\n".join(lines)


def format_consolidation(result: Stage2CustomResult) -> str:
    """Render a custom Stage 2 result as chairman context."""
    parts = [f"### {name}\n\n{content.strip()}" for name, content in result.sections.items() if content.strip()]
    if result.conflicts:
        lines: list[str] = []
        for conflict in result.conflicts:
            lines.append(f"- {conflict.topic}")
            lines.extend(f"  - {p.agent}: {p.position}" for p in conflict.positions)
            if conflict.resolution:
                lines.append(f"  - Resolution: {conflict.resolution}")
        parts.append("### Conflicts\n\n" + "\n".join(lines))
    if result.unique_insights:
        insights = "\n".join(f"- {i.insight} ({i.source})" for i in result.unique_insights)
        parts.append(f"### Unique Insights\n\n{insights}")
    return "\n\n".join(parts) or "(no consolidated content)"


def build_chairman_prompt(
    query: str,
    stage1: Sequence[Stage1Result],
    stage2: Sequence[Stage2Result],
    aggregate: Sequence[AggregateRank] | None = None,
    output_format: str | None = None,
    use_summaries: bool = False,
    consolidation: str | None = None,
) -> str:
    """Compete-mode synthesis prompt: answers plus peer rankings.

    With ``consolidation`` (a custom Stage 2 result) the rankings block is
    replaced by the consolidated analysis.
    """
    if consolidation is not None:
        intro = "Multiple AI agents have provided responses to a question, and their responses were consolidated."
        stage2_block = f"STAGE 2 - Consolidated Analysis:\n\n{consolidation}"
        evidence = "The consolidated analysis, its conflicts and unique insights"
    else:
        intro = "Multiple AI agents have provided responses to a question, and then ranked each other's responses."
        stage2_block = f"STAGE 2 - Peer Rankings:\n\n{_format_stage2_block(stage2)}{_format_aggregate_block(aggregate)}"
        evidence = "The peer rankings and what they reveal about response quality"
    return f"""You are the Chairman of an agent council. {intro}

Original Question: {query}

STAGE 1 - Individual Responses:

{_format_stage1_block(stage1, use_summaries)}

{stage2_block}

Your task as Chairman is to synthesize all of this information into a single, comprehensive, accurate answer to the original question. Consider:
- The individual responses and their insights
- {evidence}
- Any patterns of agreement or disagreement

Provide a clear, well-reasoned final answer that represents the council's collective wisdom:{_output_format_block(output_format)}"""


def format_all_responses_for_merge(stage1: Sequence[Stage1Result], use_summaries: bool = False) -> str:
    return "\n\n".join(
        f"===RESPONSE {i} ({r.agent})===\n{_response_text(r, use_summaries)}\n===END RESPONSE {i}==="
        for i, r in enumerate(stage1, start=1)
    )


_MERGE_GUIDELINES = """Guidelines:
1. Include unique content: every distinct point, fact or recommendation made by any agent must survive.
2. Deduplicate: where agents say the same thing, state it once, in its clearest form.
3. Flag conflicts: where agents contradict each other, present both positions and mark the conflict explicitly.
4. Preserve structure: keep the headings, lists and code blocks of the source responses where they help."""


def build_merge_chairman_prompt(
    query: str,
    formatted_responses: str,
    output_format: str | None = None,
    consolidation: str | None = None,
) -> str:
    """Merge-mode synthesis prompt: combine everything, no winner."""
    return f"""You are the Chairman of an agent council operating in MERGE MODE.

Several agents answered the same question independently. Do NOT pick a winner and do NOT rank the responses. Combine them into one complete answer.

Original Question: {query}

{formatted_responses}{_consolidation_block(consolidation, "CONSOLIDATED ANALYSIS")}

{_MERGE_GUIDELINES}

Write the merged answer now.{_output_format_block(output_format)}"""


def _model_list(stage1: Sequence[Stage1Result]) -> str:
    return ", ".join(r.agent for r in stage1)


def build_pass1_prompt(
    query: str,
    stage1: Sequence[Stage1Result],
    stage2: Sequence[Stage2Result] | None = None,
    aggregate: Sequence[AggregateRank] | None = None,
    pass_format: str | None = None,
    is_custom_prompt: bool = False,
    use_summaries: bool = False,
    consolidation: str | None = None,
) -> str:
    """Compete-mode Pass 1: bounded synthesis plus an outline for Pass 2."""
    responses = _format_stage1_block(stage1, use_summaries)
    if is_custom_prompt and pass_format:
        return substitute(
            pass_format,
            QUERY=query,
            RESPONSES=responses,
            MODEL_LIST=_model_list(stage1),
            CONSOLIDATION=consolidation or "",
        )

    rankings = _consolidation_block(consolidation, "CONSOLIDATED ANALYSIS")
    if stage2:
        rankings += f"\n\nPEER RANKINGS:\n\n{_format_stage2_block(stage2)}{_format_aggregate_block(aggregate)}"
    return f"""You are the Chairman of an agent council. This is Pass 1 of 2 (synthesis).

Original Question: {query}

INDIVIDUAL RESPONSES:

{responses}{rankings}

Produce a concise synthesis. Do not write the full detailed answer yet; that happens in Pass 2.
- executive_summary: the council's answer in a few paragraphs
- conflicts: points where the agents disagree or the question is ambiguous, and how you resolve them
- section_outlines: one line per section of the detailed answer, formatted "- section_name: what it must cover" (section_name in snake_case)

{describe_sections(COMPETE_PASS1_SECTIONS)}{_output_format_block(pass_format)}"""


def build_pass2_prompt(
    query: str,
    stage1: Sequence[Stage1Result],
    pass1_output: str,
    outline_names: Sequence[str],
    pass_format: str | None = None,
    is_custom_prompt: bool = False,
    use_summaries: bool = False,
) -> str:
    """Compete-mode Pass 2: expand every outlined section in full."""
    responses = _format_stage1_block(stage1, use_summaries)
    if is_custom_prompt and pass_format:
        return substitute(
            pass_format,
            QUERY=query,
            RESPONSES=responses,
            PASS1_OUTPUT=pass1_output,
            MODEL_LIST=_model_list(stage1),
        )

    names = list(outline_names) or [DEFAULT_DETAIL_SECTION]
    return f"""You are the Chairman of an agent council. This is Pass 2 of 2 (detail).

Original Question: {query}

PASS 1 OUTPUT (your own synthesis and outline):

{pass1_output}

INDIVIDUAL RESPONSES (source material):

{responses}

Expand every outlined section into its full, detailed form. Use the source material; do not repeat the executive summary.

{describe_sections(names)}{_output_format_block(pass_format)}"""


def build_merge_pass1_prompt(
    query: str,
    stage1: Sequence[Stage1Result],
    pass_format: str | None = None,
    is_custom_prompt: bool = False,
    use_summaries: bool = False,
    consolidation: str | None = None,
) -> str:
    """Merge-mode Pass 1: first merge, with unique insights and conflicts called out."""
    responses = format_all_responses_for_merge(stage1, use_summaries)
    if is_custom_prompt and pass_format:
        return substitute(
            pass_format,
            QUERY=query,
            RESPONSES=responses,
            MODEL_LIST=_model_list(stage1),
            CONSOLIDATION=consolidation or "",
        )

    return f"""You are the Chairman of an agent council in MERGE MODE. This is Pass 1 of 2.

Do NOT pick a winner. Combine all responses.

Original Question: {query}

{responses}{_consolidation_block(consolidation, "CONSOLIDATED ANALYSIS")}

{_MERGE_GUIDELINES}

Produce these sections:
- merged_content: the combined answer, deduplicated
- unique_insights: points only one agent made, with the agent's name
- conflicts: contradictions between agents, each position attributed
- coverage_gaps: parts of the question no agent covered well

{describe_sections(MERGE_PASS1_SECTIONS)}{_output_format_block(pass_format)}"""


def build_merge_pass2_prompt(
    query: str,
    pass1_output: str,
    stage1: Sequence[Stage1Result],
    pass_format: str | None = None,
    is_custom_prompt: bool = False,
    use_summaries: bool = False,
) -> str:
    """Merge-mode Pass 2: refine the merged content into the final answer."""
    responses = format_all_responses_for_merge(stage1, use_summaries)
    if is_custom_prompt and pass_format:
        return substitute(
            pass_format,
            QUERY=query,
            RESPONSES=responses,
            PASS1_OUTPUT=pass1_output,
            MODEL_LIST=_model_list(stage1),
        )

    return f"""You are the Chairman of an agent council in MERGE MODE. This is Pass 2 of 2.

Refine the Pass 1 merge into the final, complete answer. Fold the unique insights in, state the conflicts clearly, and fill the coverage gaps where the source responses allow.

Original Question: {query}

PASS 1 OUTPUT:

{pass1_output}

ORIGINAL RESPONSES:

{responses}

{describe_sections(MERGE_PASS2_SECTIONS)}{_output_format_block(pass_format)}"""


DEFAULT_CRITIQUE_PROMPT = """You are an adversarial reviewer. Find what is wrong with the draft answer below.

Original Question: ${QUERY}

DRAFT:

${DRAFT}

Classify every issue:
- blocking: factual errors, missing required content, contradictions, unsafe or broken recommendations
- advisory: style, optional improvements, matters of judgement

Reply with JSON only, in this shape:

{
  "critiques": [
    {
      "category": "blocking",
      "description": "what is wrong",
      "location": "where in the draft",
      "recommendation": "the specific fix",
      "rationale": "why it matters"
    }
  ]
}

Reply with {"critiques": []} if you find nothing."""


def build_critique_prompt(query: str, draft: str, custom_prompt: str | None = None) -> str:
    return substitute(custom_prompt or DEFAULT_CRITIQUE_PROMPT, QUERY=query, DRAFT=draft)


def _format_critique_items(items: Sequence[CritiqueItem]) -> str:
    if not items:
        return "(none)"
    return "\n\n".join(
        f"[{item.id}] from {item.source}\n"
        f"  Issue: {item.description}\n"
        f"  Location: {item.location or '-'}\n"
        f"  Fix: {item.recommendation or '-'}\n"
        f"  Why: {item.rationale or '-'}"
        for item in items
    )


def build_resolve_prompt(
    query: str,
    draft: str,
    blocking: Sequence[CritiqueItem],
    advisory: Sequence[CritiqueItem],
) -> str:
    """Ask the chairman to apply or reject each blocking critique."""
    return f"""You are the Chairman of an agent council. Reviewers critiqued your draft answer.

Original Question: {query}

DRAFT:

{draft}

BLOCKING CRITIQUES (decide for each: apply it, or reject it with a reason):

{_format_critique_items(blocking)}

ADVISORY NOTES (for context only; do NOT apply these):

{_format_critique_items(advisory)}

Produce:
- revised_draft: the full draft with every applied fix made, nothing else changed
- decisions: a JSON list with one entry per blocking critique:
  [{{"id": "<critique id>", "applied": true, "rejection_reason": null}}]

{describe_sections(RESOLVE_SECTIONS)}"""
