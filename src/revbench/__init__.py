"""revbench: benchmark a package across its git history.

Runs a package's benchmark suite at arbitrary revisions in an isolated
subprocess, judges pairs of runs for regressions and improvements, and
bisects commit ranges to find the change that introduced a regression.
"""

__version__ = "0.1.0"
