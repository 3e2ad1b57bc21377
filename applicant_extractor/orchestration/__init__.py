"""Run lifecycle, batching and retry handling for applicant extraction."""
