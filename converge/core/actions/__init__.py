"""
Action primitive library — one compiler per action kind.

``catalog.compile_action`` is the entry point; ``builders`` constructs
Action values and common multi-action plans.
"""
