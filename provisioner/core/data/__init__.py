"""
Static provisioning data: paths, repositories, config lines, notes.

Step logic lives in ``provisioner.core.services``; everything it needs to
know about the target host layout is declared here.
"""
