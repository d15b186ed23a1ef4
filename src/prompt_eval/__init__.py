"""Prompt Eval - automated evaluation of system prompt quality.

For each prompt-construction framework one model writes a system prompt,
a second model answers a battery of test questions under it and a third
model grades the answers against reference answers.

Key components:
    - prompt_eval.llm: Provider-agnostic model calls (ModelService)
    - prompt_eval.evaluation: The evaluation pipeline (EvaluationOrchestrator)
    - CLI: Run evaluations and check model connectivity

Quick start:
    # Configure a provider
    export OPENAI_API_KEY=sk-...

    # Check connectivity
    prompt-eval models test gpt-4o-mini

    # Run an evaluation
    prompt-eval run run.yaml --output-dir output/result
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
