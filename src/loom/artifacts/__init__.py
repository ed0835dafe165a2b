"""
Artifacts — structured outputs the model produces inline or via tools.

- extractor: pulls <artifact> blocks out of streamed text
- prompt: the system prompt section that teaches the model the format
"""
