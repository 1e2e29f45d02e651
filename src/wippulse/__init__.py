"""Linear WIP sync and team health metrics."""
