"""Follow-up review core: diff normalization, findings, reconciliation and reporting."""
