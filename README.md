# agentic

Building blocks for LLM agents that need to stay inside their context window.

## What it provides

- **Content types** (`agentic.content`): `Content`, `Part`, `FunctionCall`,
  `FunctionResponse`, `InlineData`, `GenerateContentConfig`, `UsageMetadata`,
  `LLMRequest` and `LLMResponse`. There is also `Plugin`, a named pair of
  before/after model hooks. A before hook that returns a response halts the
  model call. `ModelClient` is the protocol a model client must meet:
  `generate_content` and `count_tokens`.
- **Model profiles** (`agentic.profile`): `ModelProfile` is a frozen record of
  context window, output limit and cost fields. `Registry` is preloaded with
  built-in Gemini profiles and accepts custom profiles that override them. It
  validates that each custom profile has a `model_id` and a non-zero
  `context_window_tokens`. `get_profile` raises `ModelNotFoundError` for
  unknown IDs. `effective_compress_model_id()` falls back to the primary model
  when no compress model is set.
- **Compression strategies** (`agentic.compress`):
  - `Generational` keeps the most recent turns. `turns_to_keep` defaults to the
    context window divided by the output limit, and is never below 2. It asks a
    `CompressWorker` to summarise the rest as a structured handover document.
  - `ModelWorker` is a worker backed by a `ModelClient`.
  - `StrategyRegistry` resolves strategies by name and starts with
    `"generational"`. Unknown names raise `UnknownStrategyError`, which lists
    the available names.
  - Worker failures raise `CompressionError`.
- **Memory plugin** (`agentic.memory_plugin`): `MemoryPlugin` checks token
  usage before each model call.
  1. It makes a cheap offline estimate: the last reported total, plus the new
     message's tokens, plus the output limit.
  2. Only when that estimate crosses the threshold (default 0.80) does it ask an
     `ApiTokenCounter` for a precise count.
  3. Above the threshold it compresses old turns. It then rewrites the request
     as a `continue`/summary exchange followed by the recent turns and the new
     message.
  4. If usage is still at or above the emergency threshold (default 0.90), it
     compresses the summary again.
  5. When that fails, or cuts less than 5%, it returns an `LLMResponse` carrying
     an `OOMWarningEvent` under `custom_metadata["oom_warning"]`. It never
     truncates the history.

  `after_model` records the reported total. It also attaches the details of the
  latest compression under `custom_metadata["compression"]`. `snapshot()`
  returns a copy of the `MemoryMetrics`, including the `SubSession` history.
  `ClientTokenCounter` adapts a `ModelClient` to `ApiTokenCounter`.
- **State records** (`agentic.memory_state`): `OOMWarningEvent`, `SubSession`,
  `MemoryMetrics` and `CompressInfo`.
- **Request rewriting** (`agentic.rewrite`): `build_compressed_contents`,
  `contents_to_turns`, `extract_system_instruction`, and the logging helpers
  `log_subsessions` and `log_compressed_contents`.
- **Structured output** (`agentic.schema`): `plan_schema()` and `eval_schema()`
  return plain-dict schemas for the plan and evaluation JSON. The plan tree
  nests three levels below the root, and only the root accepts `"direct"`.
- **Prompt helpers** (`agentic.prompting`):
  - `build_plan_system_instruction` fills `{{AVAILABLE_TOOLS}}` and
    `{{AVAILABLE_ROLES}}`.
  - `format_results` renders a mapping as sorted `key=value` lines. Scalars are
    printed plainly and anything else is JSON-encoded.
- **Responder** (`agentic.responder`): `GeminiResponder.respond` sends the
  prompt and formatted results to the model and returns its free-form text.
  Client failures raise `ResponderError`.
- **Debugging** (`agentic.debug`): `dump_request(request, stream)` writes a
  readable dump of a request, to standard error by default. `new_debug_plugin()`
  returns a plugin that dumps every request and lets it through.

## Install

```
pip install .
pip install ".[test]"   # with the test dependencies
```

## Example

```python
from agentic.profile import Registry
from agentic.compress import Generational, GenerationalConfig, ModelWorker
from agentic.memory_plugin import MemoryPlugin, ClientTokenCounter

profile = Registry().get_profile("gemini-2.5-flash")
strategy = Generational(GenerationalConfig(), ModelWorker(client), profile)
memory = MemoryPlugin(local_counter, ClientTokenCounter(client), strategy, profile, 0.8, 0.9)
plugin = memory.build_plugin()
```

Here `client` is any object that implements `agentic.content.ModelClient`.
`local_counter` implements `agentic.memory_plugin.TokenCounter`.

## What it does not do

- It ships no model client and no local tokenizer. You supply objects that meet
  the `ModelClient` and `TokenCounter` protocols.
- It provides the schemas for planning and evaluation, but no planner or
  evaluator that calls a model with them, and no agent runner.
- It has no command-line program.

## Tests

```
pytest
```