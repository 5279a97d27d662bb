"""Access filters for declauth.

This package decides, for each request handled by a controller, whether the requester may perform the requested
action. Controllers declare access rules for their actions; the rules are checked against a privilege engine before
the action runs.

The package consists of:
- Rules and rule registries: declarations binding actions to the privileges they require
- The access filter: selects the rules which apply to a request and combines their results into a decision
- The object resolver: loads the object acted upon for rules which check its attributes
- Privilege engines: decide whether an identity holds a privilege, loaded through the engine manager
"""
