"""
llmrelay - interactive multi-provider LLM chat client.

Package structure:
- core: Session engine, config, common types, errors
- llm: Model backend abstraction and registry
- commands: Slash-command dispatcher
- session: Session persistence
- interfaces: Input sources (terminal, mic file) and output sink
"""

__version__ = "0.1.0"
