"""
Hardware manager test plugin.

Modules:
- config: process configuration passed to every component
- state: inventory catalog, allocation ledger and NodePool/Node views
- store: versioned document access and the nodelist inventory store
- allocator: allocation engine over the inventory store
- lifecycle: Node and BMC secret materialization
- reconciler: NodePool state machine and finalization
- controller: watch-driven work queue that invokes the reconciler
- api: REST surface for health and inventory inspection
"""

__version__ = "0.1.0"
