"""Authorization: access predicates, versioned resource policies and the per-row engine."""
