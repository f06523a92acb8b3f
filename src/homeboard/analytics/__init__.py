"""Event normalization and daily rollup calculations."""
