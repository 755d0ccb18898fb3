from shedflow.sgrid import sGrid as Grid  # noqa: F401
