"""Natural-language-to-query pipeline stages.

Import stages from their modules (``nl2query.pipeline.turn`` and friends);
this package does not re-export them so that provider modules can depend on
the pure stages without import cycles.
"""
