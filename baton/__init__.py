"""Baton: declarative multi-agent workflow engine.

Subpackages:
- engine: Schema validation, safe expression evaluation, graph compilation,
  node execution and the superstep execution engine
- agents: Task executor interface and CLI-backed executors (Claude, Codex, Gemini)
"""
