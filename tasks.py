"""Invoke tasks file for cleanup, testing, etc."""

from invoke import Context, task


@task
def clean(c: Context) -> None:
    """Cleans up after a test run"""
    c.run("rm -rf .pytest_cache")
    c.run("find . -name __pycache__ -type d -prune -exec rm -rf {} +")


@task
def test(c: Context, verbose: bool = False) -> None:
    """Runs the test suite"""
    c.run(f"pytest {'-v' if verbose else ''} tests")
