"""Shared fixtures: a throwaway etch project with sample plans."""

import pytest
from pathlib import Path

from etch.lib import progress
from etch.lib.parser import parse_plan_file


AUTH_PLAN = """# Plan: Auth System

## Overview

Token-based authentication for the API. Refresh tokens rotate on use. Sessions expire after a day. Admins can revoke any session.

## Feature 1: Tokens

### Task 1.1: Token model [completed]
**Complexity:** small
**Files:** auth/models.py, auth/tokens.py

Define the token table.

**Acceptance Criteria:**
- [x] Token table exists
- [ ] Tokens expire

### Task 1.2: Refresh endpoint [pending]
**Complexity:** medium
**Files in Scope:** auth/views.py
**Depends on:** Task 1.1

Add POST /auth/refresh.

> 💬 Use rotating refresh tokens.
> Old ones must be revoked.

**Acceptance Criteria:**
- [ ] Endpoint returns new token and refresh
- [ ] Endpoint returns new token
- [ ] Old token is revoked

### Task 1.3: Revocation [pending]
**Depends on:** 1.2
"""

BILLING_PLAN = """# Plan: Billing
**Priority:** 1

## Overview
Charge customers monthly.

---

## Feature 1: Invoices

### Overview
Invoice generation.

### Task 1.1: Invoice model [completed]
**Complexity:** small

**Acceptance Criteria:**
- [x] Model saved

### Task 1.2: Invoice PDF [pending]
**Depends on:** Task 1.1

**Acceptance Criteria:**
- [ ] PDF renders
- [ ] PDF is attached

### Task 1.3: Email invoices [pending]
**Depends on:** 1.2

---

## Feature 2: Payments

### Task 2.1: Stripe client
**Files in Scope:** billing/stripe.py
**Depends on:** Task 1.3, external approval

```python
## not a heading
### Task 9.9: not a task
```

### Task 2.1b: Retry failed charges [in_progress]
"""

SIMPLE_PLAN = """# Plan: Docs Refresh

### Task 1: Outline [completed]

### Task 2: Write guides
**Depends on:** Task 1

**Acceptance Criteria:**
- [ ] Guides written

### Task 3: Publish
**Depends on:** Task 2, sign-off from marketing
"""


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Project root with empty .etch/plans and .etch/progress directories."""
    (tmp_path / ".etch" / "plans").mkdir(parents=True)
    (tmp_path / ".etch" / "progress").mkdir()
    return tmp_path


def add_plan(root: Path, slug: str, text: str) -> Path:
    path = root / ".etch" / "plans" / f"{slug}.md"
    path.write_text(text)
    return path


def add_session(root: Path, slug: str, task_id: str, status: str = "pending",
                checked: tuple = (), changes: tuple = (), decisions: str = "") -> Path:
    """Create a session through the store, then fill it in like an agent would."""
    plan = parse_plan_file(root / ".etch" / "plans" / f"{slug}.md")
    task = plan.task_by_id(task_id)
    path = progress.write_session(root, plan, task)
    progress.update_status(path, status)
    for text in checked:
        progress.update_criterion(path, text)
    for change in changes:
        progress.append_to_section(path, progress.SECTION_CHANGES, f"- {change}")
    if decisions:
        progress.append_to_section(path, progress.SECTION_DECISIONS, decisions)
    return path


@pytest.fixture
def auth_project(project: Path) -> Path:
    add_plan(project, "auth-system", AUTH_PLAN)
    return project


@pytest.fixture
def billing_project(project: Path) -> Path:
    add_plan(project, "billing", BILLING_PLAN)
    return project
