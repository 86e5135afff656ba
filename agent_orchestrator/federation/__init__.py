"""
Federation Layer - Cooperating Remote Nodes

Builds the capability catalog of remote nodes, forwards turns to the node
that owns the data, decides turn by turn whether a pinned session keeps
forwarding, and runs autonomous collectors locally or remotely.
"""
