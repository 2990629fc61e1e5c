"""Task lifecycle engine.

The model, the stores, and the collaborators (state machine, dependency
graph, hierarchy resolver, history recorder) that :class:`TaskEngine` wires
together inside one store transaction per operation.
"""
