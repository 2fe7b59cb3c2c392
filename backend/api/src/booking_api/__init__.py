"""HTTP surface for the booking engine (FastAPI, deployable to Lambda)."""
