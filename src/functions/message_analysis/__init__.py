"""Message analysis job engine.

Batch analysis of inbound messages with tracked job rows, chunked
concurrent dispatch to the analyzer, self-extending continuation and the
refresh -> sync -> analyze -> profile pipeline.
"""

__version__ = "1.0.0"
