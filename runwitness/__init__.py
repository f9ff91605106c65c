"""runwitness: build run observer and SLSA provenance generator.

Watches a run on an external build system (GitHub Actions, Google Cloud
Build), discovers the artifacts it produced by diffing artifact stores
(local directories, GCS buckets, OCI registries) before and after the run,
and emits an in-toto statement carrying a SLSA v0.2 provenance predicate.
"""

__version__ = "0.1.0"
__description__ = "Observe build runs and attest to the artifacts they produce"

from runwitness.core.watcher import Watcher
from runwitness.models.attestation import Attestation

__all__ = ["Attestation", "Watcher", "__version__"]
