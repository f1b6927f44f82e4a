"""
Tests for question descriptions and the results tables report.
"""

import pandas as pd

from qualtrics_html_results import (
    DISPLAY_LOGIC_REFERRAL,
    create_html_results_tables,
    description_lines,
    question_description,
    render_html_table,
)


def make_question(tag, qtype="MC", selector="SAVR", text="Question?", **extra):
    question = {
        "Payload": {
            "QuestionType": qtype,
            "Selector": selector,
            "DataExportTag": tag,
            "QuestionTextClean": text,
        }
    }
    question.update(extra)
    return question


def results_table():
    return pd.DataFrame({"Choice": ["Yes", "No"], "N": [3, 4], "%": ["43%", "57%"]})


class TestRenderHtmlTable:
    """Test the shared table renderer."""

    def test_header_and_cells(self):
        html = render_html_table(results_table(), "data")
        assert html.startswith('<table class="data">')
        assert "<tr><th>Choice</th><th>N</th><th>%</th></tr>" in html
        assert "<tr><td>Yes</td><td>3</td><td>43%</td></tr>" in html
        assert html.endswith("</table>")

    def test_without_header(self):
        html = render_html_table(results_table(), "data", include_header=False)
        assert "<th>" not in html

    def test_escapes_cells(self):
        html = render_html_table(pd.DataFrame({"a": ["<b>&"]}), "data")
        assert "<td>&lt;b&gt;&amp;</td>" in html

    def test_missing_cells_are_empty(self):
        html = render_html_table(pd.DataFrame({"a": [None, float("nan")]}), "data")
        assert html.count("<td></td>") == 2


class TestDescriptionLines:
    """Test the lines of the question description table."""

    def test_text_entry_without_table(self):
        question = make_question("Q1", "TE", "SL", "How do you feel?")
        assert description_lines(question) == [
            "Export Tag: Q1",
            "How do you feel?",
            "Question Q1 is a text entry question. See Appendix.",
        ]

    def test_text_entry_with_table_has_no_availability_line(self):
        question = make_question("Q1", "TE", "SL", Table=results_table())
        assert description_lines(question) == ["Export Tag: Q1", "Question?"]

    def test_unprocessed_question_with_text_component(self):
        question = make_question(
            "Q2", Responses=pd.DataFrame({"Q2": ["1"], "Q2_4_TEXT": ["other"]}))
        lines = description_lines(question)
        assert "The results table for Question Q2 could not be automatically processed." in lines
        assert lines[-1] == "This question has a text entry component. See Appendix."

    def test_multiple_text_components(self):
        question = make_question(
            "Q3",
            Table=results_table(),
            Responses=pd.DataFrame({"Q3": ["1"], "Q3_4_TEXT": ["a"], "Q3_5_TEXT": ["b"]}),
        )
        lines = description_lines(question)
        assert lines == [
            "Export Tag: Q3",
            "Question?",
            "This question has multiple text entry components. See Appendices.",
        ]

    def test_only_text_columns_is_not_unprocessed(self):
        question = make_question("Q4", Responses=pd.DataFrame({"Q4_TEXT": ["a"]}))
        lines = description_lines(question)
        assert not any("could not be automatically processed" in line for line in lines)

    def test_notes_then_display_logic(self):
        question = make_question("Q5", Table=results_table(), qtNotes=["Note one", "Note two"])
        question["Payload"]["DisplayLogic"] = {"0": {}}
        assert description_lines(question) == [
            "Export Tag: Q5",
            "Question?",
            "Note one",
            "Note two",
            DISPLAY_LOGIC_REFERRAL,
        ]

    def test_raw_question_text_is_cleaned(self):
        question = {"Payload": {"QuestionType": "MC", "DataExportTag": "Q6",
                                "QuestionText": "<p>How&nbsp;<b>often</b>?</p>"}}
        assert description_lines(question)[1] == "How often ?"


class TestQuestionDescription:
    """Test the rendered description fragments."""

    def test_with_results_table(self):
        tables = question_description(make_question("Q1", Table=results_table()))
        assert 'class="question_description data table table-bordered table-condensed"' in tables[0]
        assert tables[1] == "&nbsp;"
        assert 'class="data table table-bordered table-condensed"' in tables[2]
        assert "<th>Choice</th>" in tables[2]
        assert tables[-1] == "<br><br>"

    def test_without_results_table(self):
        tables = question_description(make_question("Q1", "TE"))
        assert len(tables) == 3
        assert "<th>" not in tables[0]


class TestCreateHtmlResultsTables:
    """Test the results tables report."""

    def build_blocks(self):
        return [
            {
                "ID": "BL_1",
                "Description": "Intro",
                "BlockElements": [
                    make_question("Q1", Table=results_table()),
                    make_question("Q2", "DB", "TB", Table=results_table()),
                    make_question("Q3", Table=results_table(), qtSkip=True),
                    {"Type": "Page Break"},
                ],
            },
            {"ID": "BL_2", "Description": "Empty", "BlockElements": []},
            {
                "ID": "BL_3",
                "Description": "Feedback",
                "BlockElements": [make_question("Q4", "TE", "ML")],
            },
        ]

    def test_starts_with_spacer(self):
        assert create_html_results_tables(self.build_blocks()).startswith("<br>")

    def test_skipped_and_descriptive_questions_are_left_out(self):
        html = create_html_results_tables(self.build_blocks())
        assert "Export Tag: Q1" in html
        assert "Export Tag: Q4" in html
        assert "Export Tag: Q2" not in html
        assert "Export Tag: Q3" not in html

    def test_block_headers(self):
        html = create_html_results_tables(self.build_blocks())
        assert "<h5>Intro</h5><br>" in html
        assert "<h5>Feedback</h5><br>" in html
        assert "<h5>Empty</h5>" not in html

    def test_block_headers_can_be_turned_off(self):
        html = create_html_results_tables(self.build_blocks(), include_block_headers=False)
        assert "<h5>" not in html
        assert "Export Tag: Q1" in html

    def test_flow_order(self):
        html = create_html_results_tables(self.build_blocks(), flow=["BL_3", "BL_1"])
        assert html.index("Export Tag: Q4") < html.index("Export Tag: Q1")

    def test_idempotent(self):
        blocks = self.build_blocks()
        assert create_html_results_tables(blocks) == create_html_results_tables(blocks)
