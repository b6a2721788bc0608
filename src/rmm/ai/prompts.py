"""Prompt templates for memory extraction, memory update and cited generation.

Templates follow Appendix D of the RMM paper (ACL 2025). Literal braces
in examples are doubled for str.format.
"""

from __future__ import annotations

import json

EXTRACT_SPEAKER_TEMPLATE = """Task Description: Given a session of dialogue between SPEAKER_1 and SPEAKER_2, extract the
personal summaries of {speaker}, with references to the corresponding turn IDs. Ensure
the output adheres to the following rules:

* Output results in JSON format. The top-level key is "extracted_memories". The value
  should be a list of dictionaries, where each dictionary has the keys "summary" and
  "reference":
  – summary: A concise personal summary, which captures relevant information about
    {speaker}'s experiences, preferences, and background, across multiple turns.
  – reference: A list of references, each in the format of [turn_id] indicating
    where the information appears.
* If no personal summary can be extracted, return NO_TRAIT.

Example:
INPUT:
* Turn 0:
  – SPEAKER_1: Did you check out that new gym in town?
  – SPEAKER_2: Yeah, I did. I'm not sure I like the vibe there, though.
* Turn 1:
  – SPEAKER_1: What was wrong with it?
  – SPEAKER_2: The folks there seemed to care more about how they looked than working
    out. It was a little too trendy for me. I'm pretty plain.
* Turn 2:
  – SPEAKER_1: Ah, got it. Well, maybe one of the older gyms will work out better
    for you, or I guess you could get that treadmill you were talking about before.
  – SPEAKER_2: I'm leaning towards the treadmill. I think it will work better for
    my lifestyle.
* Turn 3:
  – SPEAKER_1: I usually just lift weights there, to be honest.
  – SPEAKER_2: As long as the weather isn't too bad, I prefer to go for a run. I'm
    from Alaska, so I'm pretty weather-tough.

OUTPUT:
{example_output}

Task: Follow the JSON format demonstrated in the example above and extract the personal
summaries for {speaker} from the following dialogue session.
Input: {dialogue}
Output:
"""

_SPEAKER_EXAMPLES = {
    "SPEAKER_1": {
        "extracted_memories": [
            {
                "summary": "SPEAKER_1 asked about a new gym in town and suggested older gyms or a treadmill as alternatives.",
                "reference": [0, 2],
            },
            {
                "summary": "SPEAKER_1 usually lifts weights at the gym rather than using a treadmill.",
                "reference": [3],
            },
        ]
    },
    "SPEAKER_2": {
        "extracted_memories": [
            {
                "summary": "SPEAKER_2 disliked the trendy vibe of the new gym and describes themselves as pretty plain.",
                "reference": [0, 1],
            },
            {
                "summary": "SPEAKER_2 is leaning towards buying a treadmill for home use.",
                "reference": [2],
            },
            {
                "summary": "SPEAKER_2 prefers running outdoors and is from Alaska.",
                "reference": [3],
            },
        ]
    },
}

UPDATE_MEMORY_TEMPLATE = """Task Description: Given a list of history personal summaries for a specific user and a new
and similar personal summary from the same user, update the personal history summaries
following the instructions below:

* Input format: Both the history personal summaries and the new personal summary
  are provided in JSON format, with the top-level keys of "history_summaries" and
  "new_summary".
* Possible update actions:
  – Add: If the new personal summary is not relevant to any history personal summary,
    add it.
    Format: Add()
  – Merge: If the new personal summary is relevant to a history personal summary,
    merge them as an updated summary.
    Format: Merge(index, merged_summary)
    Note: index is the position of the relevant history summary in the list.
    merged_summary is the merged summary of the new summary and the relevant history
    summary. Two summaries are considered relevant if they discuss the same aspect
    of the user's personal information or experiences.
* If multiple actions need to be executed, output each action in a single line, and
  separate them with a newline character ("\\n").
* Do not include additional explanations or examples in the output, only return the
  required action functions.

Example:
INPUT:
* History Personal Summaries:
  – {{"history_summaries": ["SPEAKER_1 works out although he doesn't particularly enjoy it."]}}
* New Personal Summary:
  – {{"new_summary": "SPEAKER_1 exercises every Monday and Thursday."}}

OUTPUT ACTION:
Merge(0, SPEAKER_1 exercises every Monday and Thursday, although he doesn't particularly enjoy it.)

Task: Follow the example format above to update the personal history for the given case.
INPUT:
* History Personal Summaries:
  – {history_json}
* New Personal Summary:
  – {new_summary_json}

OUTPUT ACTION:
"""

CITATION_SYSTEM_PROMPT = """When memories are provided inside a <memories> block, cite the ones your answer relies on using [i], where i is the memory index, or list several as [i, j, k].
Do not cite memories that are not useful. If no memory is useful, end your reply with [NO_CITE].
Citations are judged on whether the response uses the original dialogue turns, not the summaries."""

GENERATE_WITH_CITATIONS_TEMPLATE = """Task Description: Given a user query and a list of memories consisting of personal
summaries with their corresponding original turns, generate a natural and fluent response
while adhering to the following guidelines:

* Cite useful memories using [i], where i corresponds to the index of the cited memory.
* Do not cite memories that are not useful. If no useful memory exist, output [NO_CITE].
* Each memory is independent and may repeat or contradict others. The response must
  be directly supported by cited memories.
* If the response relies on multiple memories, list all corresponding indices, e.g.,
  [i, j, k].
* The citation is evaluated based on whether the response references the original turns,
  not the summaries.

Examples:
Case 1: Useful Memories Found
INPUT:
* User Query: SPEAKER_1: What hobbies do I enjoy?
* Memories:
  – Memory [0]: SPEAKER_1 enjoys hiking and often goes on weekend trips.
    * Speaker 1: I love spending my weekends hiking in the mountains.
  – Memory [1]: SPEAKER_1 plays the guitar and occasionally performs at open mics.
    * Speaker 1: I've been practicing guitar for years and love playing at open mics.
  – Memory [2]: SPEAKER_1 is interested in astronomy and enjoys stargazing.
    * Speaker 1: I recently bought a telescope to get a closer look at planets.

Output: You enjoy hiking, playing guitar, and stargazing. [0, 1, 2]

Case 2: No Useful Memories
INPUT:
* User Query: SPEAKER_1: What countries did I go to last summer?
* Memories:
  – Memory [0]: SPEAKER_1 enjoys hiking and often goes on weekend trips.
    * Speaker 1: I love spending my weekends hiking in the mountains.

Output: I don't have enough information to answer that. [NO_CITE]

Input:
* User Query: {query}
* Memories: {memories_block}

Output:
"""


def _build_extract_prompt(speaker: str, dialogue: str) -> str:
    return EXTRACT_SPEAKER_TEMPLATE.format(
        speaker=speaker,
        example_output=json.dumps(_SPEAKER_EXAMPLES[speaker], indent=2),
        dialogue=dialogue,
    )


def build_extract_speaker1_prompt(dialogue: str) -> str:
    """Extraction prompt targeting SPEAKER_1 (the user)."""
    return _build_extract_prompt("SPEAKER_1", dialogue)


def build_extract_speaker2_prompt(dialogue: str) -> str:
    """Extraction prompt targeting SPEAKER_2 (the agent)."""
    return _build_extract_prompt("SPEAKER_2", dialogue)


def build_update_memory_prompt(history_summaries: list[str], new_summary: str) -> str:
    """Build the Add/Merge decision prompt.

    Args:
        history_summaries: Summaries of similar existing memories, in search order
        new_summary: Summary of the newly extracted memory

    Returns:
        Prompt text
    """
    return UPDATE_MEMORY_TEMPLATE.format(
        history_json=json.dumps({"history_summaries": history_summaries}),
        new_summary_json=json.dumps({"new_summary": new_summary}),
    )


def build_generate_with_citations_prompt(query: str, memories_block: str) -> str:
    """Build the single-prompt cited generation request."""
    return GENERATE_WITH_CITATIONS_TEMPLATE.format(query=query, memories_block=memories_block)
