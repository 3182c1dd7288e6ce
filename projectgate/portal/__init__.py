"""Portal tokens: delegated, time-boxed project access for contractors and clients."""
