"""
Runtime events and evaluation context.

- models: EventType and EventRecord.
- context: PageContext, UserContext and device/browser classification.
- source: EventSource turning page signals into enriched EventRecords.
"""
