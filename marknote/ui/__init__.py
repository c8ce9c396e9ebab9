"""Console front-ends for inspecting a MarkNote workspace."""
