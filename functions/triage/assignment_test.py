# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================



import unittest

from backend.db import AssignmentRuleRecord, InMemoryDbClient, IssueRecord
from shared.types import CommentType
from triage import assignment


def _issue(category, department=""):
    return IssueRecord(
        title=f"{category} issue",
        description="",
        category=category,
        reported_by_id="citizen-1",
        assigned_department=department,
    )


class SeedDefaultsTest(unittest.TestCase):

    def test_seeding_is_idempotent(self):
        db = InMemoryDbClient()
        self.assertEqual(assignment.seed_default_departments(db), 5)
        self.assertEqual(assignment.seed_default_rules(db), 6)
        self.assertEqual(assignment.seed_default_departments(db), 0)
        self.assertEqual(assignment.seed_default_rules(db), 0)
        self.assertEqual(len(db.list_departments()), 5)


class MatchRuleTest(unittest.TestCase):

    def test_case_insensitive_and_enabled_only(self):
        rules = [
            AssignmentRuleRecord(category="Roads", department="Disabled", enabled=False),
            AssignmentRuleRecord(category="roads", department="Public Works"),
        ]
        self.assertEqual(assignment.match_rule(rules, "ROADS").department, "Public Works")
        self.assertIsNone(assignment.match_rule(rules, "Garbage"))
        self.assertIsNone(assignment.match_rule(rules, None))


class AssignIssueTest(unittest.TestCase):

    def setUp(self):
        self.db = InMemoryDbClient()
        assignment.seed_default_rules(self.db)

    def test_assign_issue_logs_comment(self):
        issue = self.db.create_issue(_issue("Water Leak"))

        department = assignment.assign_issue(self.db, issue, self.db.list_assignment_rules())

        self.assertEqual(department, "Water & Sanitation")
        self.assertEqual(self.db.get_issue(issue.issue_id).assigned_department, department)
        comment = self.db.list_comments(issue.issue_id)[0]
        self.assertEqual(comment.type, CommentType.ASSIGNMENT)
        self.assertEqual(comment.author_email, "auto-assign@system")

    def test_bulk_assign_only_touches_unassigned(self):
        self.db.create_issue(_issue("Roads"))
        self.db.create_issue(_issue("Streetlight"))
        self.db.create_issue(_issue("Unknown"))
        kept = self.db.create_issue(_issue("Roads", department="Custom Crew"))

        self.assertEqual(assignment.run_bulk_auto_assign(self.db), 2)
        self.assertEqual(self.db.get_issue(kept.issue_id).assigned_department, "Custom Crew")

    def test_bulk_assign_without_rules(self):
        db = InMemoryDbClient()
        db.create_issue(_issue("Roads"))
        self.assertEqual(assignment.run_bulk_auto_assign(db), 0)


if __name__ == "__main__":
    unittest.main()
