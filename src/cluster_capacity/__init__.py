"""
cluster_capacity

This package answers a capacity planning question for a container cluster:
how many copies of a candidate machine must be added so that every workload
can be placed.

We keep modules small and well separated:
core contains shared data structures, quantities and errors
cluster contains the snapshot and the base cluster sources
workload contains manifest loading and pod fan out
ordering contains the submission ordering policies
oracle contains the placement contract and an in memory first fit oracle
planner contains the round based search and its report
runner contains session configuration, composition and the command line
"""
