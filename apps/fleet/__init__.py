"""Fleet collaborators package.

Vehicles and drivers are owned by other services. The rental core only
reads their snapshots and reports back through the directory ports defined
here.
"""
