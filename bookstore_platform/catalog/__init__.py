"""Book catalog, per-user favorites and orders."""
