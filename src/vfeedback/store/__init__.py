"""File-backed stores.

Layout:
    ~/.visual-feedback/
    ├── change-queue.json              # Request Store: {"version": 1, "changes": {id: change}}
    ├── servers.json                   # Instance Registry: {pid: server entry}
    ├── token                          # Shared connection secret
    └── beads/                         # Subject beads for changes without a project path

    <projectPath>/.beads/elements/
    └── el-1a2b3c4d.json               # One bead per element subject id
"""
