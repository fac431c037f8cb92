"""
ProvisionKit - declarative build-environment provisioning.

ProvisionKit replaces ad hoc installer scripts with an idempotent, resumable
provisioning plan: tool checks, package-manager installs, archive fetches,
patched source builds and environment publication, executed in dependency
order with fail-fast semantics.
"""

__version__ = "0.1.0"
