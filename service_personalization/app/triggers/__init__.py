"""
Trigger predicates.

The evaluator maps every TriggerKind to a pure predicate over the trigger
config, the current EventRecord and the page/user context.
"""
