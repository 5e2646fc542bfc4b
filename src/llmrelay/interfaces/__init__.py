"""
Interfaces module - input sources and output sink.

Sources:
- terminal: prompt_toolkit line reader (primary)
- file_watch: mic transcription file monitor

All sources implement the InputSource protocol and only produce lines;
the session engine is the single consumer.
"""
