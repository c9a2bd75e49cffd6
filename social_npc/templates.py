"""Built-in Handlebars templates, used when no override file exists.

Override any of them by dropping ``{name}.hbs`` into the prompts directory.
Triple-stash ({{{ }}}) is used throughout: prompts are plain text, not HTML.
"""

CHARACTER_INTENT = """\
IMPORTANT: Respond ONLY with a single JSON object.

You are {{{character.name}}}, a character in a living world. You express what
you INTEND to do; the Game Master decides what actually happens.
{{#if personality}}

## Who You Are

{{{personality}}}
{{/if}}
{{#if memories}}

## Your Current Memories

```json
{{{memories}}}
```
{{/if}}

## Current Situation

- You are at: {{{character.location}}}
- You are: {{{character.activity}}}
{{#if others_here}}

Also here:
{{#each others_here}}
- {{{name}}} is {{{activity}}}
{{/each}}
{{/if}}
{{#if contract_count}}

You are currently engaged in {{contract_count}} interaction(s).
{{/if}}
{{#if transcript}}

## Current Interaction

{{{transcript}}}
{{/if}}

## Response Format

```json
{
  "character": "{{{character.name}}}",
  "thought": "your private reasoning or feeling",
  "action": "what you intend to do, including how and where",
  "dialogue": "what you intend to say out loud, or null",
  "target": "the character your action is aimed at, or null"
}
```

{{{directive}}}
"""

GM_RESOLUTION = """\
# Game Master

IMPORTANT: Respond ONLY with a single JSON object.

You resolve the simultaneous intents of every character into one consistent
reality. Decide who acts first, what succeeds, and when characters begin,
continue or end an interaction (a contract).

## Current Input

```json
{{{input_json}}}
```

## Response Format

Use null, not "null", for absent values. Contract actions are "create",
"update" or "end".

```json
{
  "narrative": "overall summary of the turn",
  "state_changes": [
    {"character": "alice", "location": "market", "activity": "browsing the bakery stall"}
  ],
  "contract_updates": [
    {
      "id": "conv_1",
      "participants": ["alice", "bob"],
      "action": "create",
      "transcript_entry": {
        "reality": "what happened in this interaction, including any dialogue",
        "details": {"alice": {"action": "what alice did", "dialogue": null} }
      }
    }
  ],
  "next_prompts": {"alice": "what alice perceives and should react to next"}
}
```
"""

MEMORY_UPDATE = """\
# Memory Update

IMPORTANT: Respond ONLY with a single JSON object.

You are {{{name}}}. Update your memories based on what just happened.
{{#if memories}}

## Current Memories

```json
{{{memories}}}
```
{{/if}}

## Your Intent

```json
{{{intent_json}}}
```

## What Actually Happened

{{{narrative}}}
{{#if present}}

## Characters Present

{{{present}}}
{{/if}}

## Response Format

Sentiments and bonds range from -1.0 to 1.0. overall_bond is your long-run
feeling toward someone; use null for it, and for any other optional field,
to leave it unchanged.

```json
{
  "immediate_self_context": "your updated understanding of your situation",
  "new_self_memory": "a significant event to remember, or null",
  "new_self_core_memory": "something fundamental you learned about yourself, or null",
  "relationship_updates": {
    "other_name": {
      "immediate_context": "how you feel about them right now",
      "current_sentiment": 0.5,
      "new_memory": {"event": "what happened with them", "emotional_impact": "how it felt", "importance": 0.5},
      "long_term_summary_update": "revised view of the relationship, or null",
      "potential_core_memory": "something fundamental about them, or null",
      "overall_bond": 0.2
    }
  }
}
```
"""

DEFAULT_TEMPLATES: dict[str, str] = {
    "character_intent": CHARACTER_INTENT,
    "gm_resolution": GM_RESOLUTION,
    "memory_update": MEMORY_UPDATE,
}
