"""PlatformAdmin Reconciler (PAR).

Control loop for the PlatformAdmin resource. For every PlatformAdmin it:
 - resolves the desired components (version catalog + override annotations)
 - upserts the owned config objects, exposures and workload-sets
 - garbage-collects children that are no longer desired
 - aggregates readiness into the parent's status conditions
 - detaches the parent from shared workload-set pools on deletion

The object store is a small SQLite-backed stand-in for the cluster API so the
whole loop can be run and inspected on a single machine.
"""
