"""
External collaborators: extraction oracle, retrieval backends, mailbox,
knowledge base.
"""
