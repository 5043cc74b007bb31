"""
FlexTrace core.

Record model and validation, task context, part-task state machine,
NDJSON writers with retention, timeline reconstruction, lane packing,
handoff inference, analysis/export, capture hooks and the tracectl CLI.
"""
