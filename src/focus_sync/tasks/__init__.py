"""
Task subsystem.

Components:
- task_models.py: Task, Priority and row/field conversion
- local_store.py: SQLite-backed store used while signed out
- repository.py: TaskRepository, routing every operation to the remote or the local store
"""
