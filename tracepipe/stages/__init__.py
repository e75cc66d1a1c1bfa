"""Pipeline stages: authorize, validate, transform, load, route.

Each stage exposes a small function API taking the run's ``PipelineRun`` plus
the collaborators it needs. A stage either returns the details to record for
its Succeeded operation record or raises a ``tracepipe.errors.PipelineError``.
"""
