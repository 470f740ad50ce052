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
from unittest.mock import patch

from triage import categorize
from shared.types import AiAnalysis, IssuePriority


class ParseAnalysisResponseTest(unittest.TestCase):

    def test_parses_fenced_json(self):
        text = (
            "```json\n"
            '{"suggestedCategory":"garbage","confidence":1.4,'
            '"description":"Overflowing bin","severity":"HIGH","tags":["bin","waste"]}'
            "\n```"
        )
        analysis = categorize.parse_analysis_response(text)
        self.assertEqual(analysis.suggested_category, "Garbage")
        self.assertEqual(analysis.confidence, 1.0)
        self.assertEqual(analysis.severity, "high")
        self.assertEqual(analysis.tags, ["bin", "waste"])

    def test_unknown_label_goes_through_keyword_table(self):
        analysis = categorize.parse_analysis_response(
            '{"suggestedCategory":"pothole","confidence":0.7,"severity":"medium"}'
        )
        self.assertEqual(analysis.suggested_category, "Roads")

    def test_unparsable_response_falls_back(self):
        analysis = categorize.parse_analysis_response("I think this is a road")
        self.assertEqual(analysis.suggested_category, "Other")
        self.assertEqual(analysis.confidence, 0.0)


class KeywordHeuristicsTest(unittest.TestCase):

    def test_keyword_category(self):
        category, confidence = categorize.keyword_category(
            "Huge pothole on the main road"
        )
        self.assertEqual(category, "Roads")
        self.assertAlmostEqual(confidence, 0.8)

    def test_keyword_category_without_hits(self):
        self.assertEqual(categorize.keyword_category("something odd"), ("Other", 0.0))

    def test_keyword_sentiment(self):
        self.assertLess(categorize.keyword_sentiment("dangerous and broken"), -0.6)
        self.assertGreater(categorize.keyword_sentiment("thanks, fixed quickly"), 0)
        self.assertEqual(categorize.keyword_sentiment("a streetlight"), 0.0)


class InferPriorityTest(unittest.TestCase):

    def test_hazard_forces_critical(self):
        priority = categorize.infer_priority("Low", "Smell of gas near school", 0.0)
        self.assertEqual(priority, IssuePriority.CRITICAL)

    def test_negative_sentiment_escalates_one_step(self):
        priority = categorize.infer_priority("Medium", "bin", -0.8, severity="medium")
        self.assertEqual(priority, IssuePriority.HIGH)

    def test_never_lowers_citizen_priority(self):
        priority = categorize.infer_priority("High", "small crack", 0.2, severity="low")
        self.assertEqual(priority, IssuePriority.HIGH)

    def test_invalid_priority_defaults_to_medium(self):
        self.assertEqual(
            categorize.infer_priority("urgent!!", "bin", 0.0), IssuePriority.MEDIUM
        )


class ChooseCategoryTest(unittest.TestCase):

    def test_keeps_citizen_category(self):
        self.assertEqual(categorize.choose_category("Roads", "Garbage", 0.95), "Roads")

    def test_replaces_other_when_confident(self):
        self.assertEqual(categorize.choose_category("Other", "Garbage", 0.6), "Garbage")

    def test_keeps_other_when_unsure(self):
        self.assertEqual(categorize.choose_category("", "Garbage", 0.5), "Other")

    def test_keeps_free_form_category(self):
        self.assertEqual(
            categorize.choose_category("Drainage", "Garbage", 0.9), "Drainage"
        )
        self.assertEqual(categorize.choose_category(" Noise ", "Other", 0.0), "Noise")

    def test_canonicalizes_known_category_case(self):
        self.assertEqual(categorize.choose_category("roads", "Garbage", 0.9), "Roads")


@patch("models.api_config.DEFAULT_API_KEY", None)
class TriageIssueTest(unittest.TestCase):

    def test_keyword_fallback_without_api_key(self):
        result = categorize.triage_issue(
            "Garbage dump",
            "Trash everywhere, disgusting and unsafe",
            category="Other",
            priority="Medium",
        )
        self.assertEqual(result.category, "Garbage")
        self.assertEqual(result.priority, IssuePriority.HIGH)
        self.assertLess(result.sentiment_score, 0)
        self.assertIsNone(result.ai_analysis)

    def test_free_form_category_survives_triage(self):
        result = categorize.triage_issue(
            "Loud factory noise", "All night long", category="Noise", api_key=None
        )
        self.assertEqual(result.category, "Noise")

    @patch("triage.categorize.score_sentiment")
    @patch("triage.categorize.analyze_issue_image")
    def test_uses_model_results(self, mock_analyze, mock_sentiment):
        mock_analyze.return_value = AiAnalysis(
            suggested_category="Streetlight",
            confidence=0.9,
            description="Broken lamp",
            severity="high",
        )
        mock_sentiment.return_value = -0.1

        result = categorize.triage_issue(
            "Dark street", "Nothing works", image_bytes=b"jpeg", api_key="key"
        )

        self.assertEqual(result.category, "Streetlight")
        self.assertEqual(result.priority, IssuePriority.HIGH)
        self.assertEqual(result.sentiment_score, -0.1)
        mock_analyze.assert_called_once_with(b"jpeg", api_key="key")

    @patch("triage.categorize.score_sentiment", side_effect=RuntimeError("quota"))
    @patch("triage.categorize.analyze_issue_image", side_effect=RuntimeError("quota"))
    def test_model_failures_fall_back_to_keywords(self, mock_analyze, mock_sentiment):
        result = categorize.triage_issue(
            "Water leak", "Pipe burst", image_bytes=b"jpeg", api_key="key"
        )
        self.assertEqual(result.category, "Water Leak")
        self.assertIsNone(result.ai_analysis)


if __name__ == "__main__":
    unittest.main()
