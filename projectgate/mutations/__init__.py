"""Write path: derived values, audit trail, propagation and the entity writer."""
