"""
Qualtrics HTML Results
======================

A tool to linearize a decoded Qualtrics survey into HTML report fragments.

The survey is supplied as its blocks of questions, each question carrying
its QSF Payload and, where available, the pre-tabulated results Table, the
raw Responses and any manually coded comments. Three reports are produced:

    - Results tables: a description and results table for every question
    - Text appendices: lettered verbatim appendices for open-ended answers
    - Display logic: the display and skip logic attached to each question

Usage:
    CLI: python qualtrics_html_results.py -o reports/ survey.json
"""

import json
import logging
import os
import re
import string
import sys
from enum import Enum
from html import escape, unescape

import pandas as pd


# =============================================================================
# CONSTANTS
# =============================================================================

# Response columns whose id contains this marker hold free text
TEXT_ENTRY_MARKER = 'TEXT'

# Qualtrics writes -99 for "seen but not answered"
MISSING_SENTINEL = -99
MISSING_RESPONSE_VALUES = ('-99', '')

# Coded comments are appendicized only above this many categorized responses
DEFAULT_N_THRESHOLD = 15

ALPHABET_SIZE = len(string.ascii_uppercase)

# Selectors of single answer multiple choice questions
SINGLE_ANSWER_SELECTORS = ('SAVR', 'SAHR', 'SACOL', 'DL', 'SB')

# Table classes, one per report table kind
DESCRIPTION_TABLE_CLASS = 'question_description data table table-bordered table-condensed'
RESULTS_TABLE_CLASS = 'data table table-bordered table-condensed'
TEXT_APPENDIX_CLASS = 'text_appendices data table table-bordered table-condensed'
SURVEY_LOGIC_CLASS = 'survey_logic data table table-bordered table-condensed'

DISPLAY_LOGIC_REFERRAL = "Refer to the Display Logic panel for this question's logic."
VERBATIM_DISCLAIMER = 'Verbatim responses -- these have not been edited in any way.'
NO_RESPONDENTS_MESSAGE = 'No respondents answered this question'
CODED_COMMENTS_TAG = 'Coded Comments'
SKIP_LOGIC_MARKER = 'Skip Logic:'
MCSA_MULTITEXT_MESSAGE = (
    'This question could not be automatically processed because the CSV '
    'response dataset does not separate the responses for each text entry '
    'component of this question.'
)

# Output files written by process_survey()
REPORT_FILES = {
    'results': 'results_tables.html',
    'appendices': 'text_appendices.html',
    'logic': 'display_logic.html',
}


# =============================================================================
# LOGGING SETUP
# =============================================================================

logger = logging.getLogger('QualtricsHtmlResults')


def setup_logging(debug=False, log_file=None):
    """
    Configure logging with optional file output.

    Args:
        debug: If True, sets logging level to DEBUG; otherwise WARNING.
        log_file: Optional path to write log output to the file.
    """
    level = logging.DEBUG if debug else logging.WARNING
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(message)s',
        datefmt='%H:%M:%S'
    )
    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    logger.addHandler(console)

    # File output also records where each message came from
    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(file_handler)


# =============================================================================
# ERRORS
# =============================================================================

class MalformedQuestionError(ValueError):
    """Raised when a question lacks data that a report branch relies on."""


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def clean_html(text):
    """
    Remove HTML tags and entities from Qualtrics text.

    Args:
        text: HTML-formatted text from the QSF.

    Returns:
        Plain text with tags removed and whitespace normalized.
    """
    if not text:
        return ''

    text = unescape(str(text))
    text = re.sub(r'<[^>]+>', ' ', text)
    return re.sub(r'\s+', ' ', text).strip()


def strip_bold(message):
    """Remove the <b> tags wrapping a summary message."""
    return re.sub(r'</?b>', '', message)


def safe_str(value):
    """
    Convert a cell value to a string, mapping None/NaN to ''.

    Unlike a display formatter, whitespace is kept so that verbatim
    responses are reproduced exactly.
    """
    if value is None:
        return ''
    if pd.api.types.is_scalar(value) and pd.isna(value):
        return ''
    return str(value)


def is_true(value):
    """Interpret a QSF flag, which may be a bool or the string 'true'."""
    if value is True:
        return True
    if isinstance(value, str):
        return value.strip().lower() == 'true'
    return False


def entries(collection):
    """
    Return the entries of a QSF Choices/Answers/SkipLogic collection.

    The QSF stores these either as a dict keyed by id or as a list.
    """
    if collection is None:
        return []
    if isinstance(collection, dict):
        return list(collection.values())
    if isinstance(collection, (list, tuple)):
        return list(collection)
    return []


def is_missing_response(value):
    """
    Check whether a response cell means "no response".

    Args:
        value: A single response cell.

    Returns:
        True for the -99 sentinel, the empty string, None and NaN.
    """
    if isinstance(value, str):
        return value in MISSING_RESPONSE_VALUES
    if value is None or (pd.api.types.is_scalar(value) and pd.isna(value)):
        return True
    try:
        return float(value) == MISSING_SENTINEL
    except (TypeError, ValueError):
        return False


def clean_responses(responses):
    """
    Drop the respondents who left every given column unanswered.

    Args:
        responses: DataFrame of response columns.

    Returns:
        DataFrame holding only rows with at least one real answer.
    """
    if responses.empty:
        return responses
    missing = responses.apply(lambda column: column.map(is_missing_response))
    return responses.loc[~missing.all(axis=1).astype(bool)]


# =============================================================================
# TABLE RENDERING
# =============================================================================

def render_html_table(frame, css_class, include_header=True):
    """
    Render a DataFrame as a bordered HTML table.

    This is the only place report tables are turned into markup. Every
    cell is HTML-escaped; no index column is written.

    Args:
        frame: DataFrame whose columns become the header row.
        css_class: Value of the table's class attribute.
        include_header: Whether to write the column names as a header row.

    Returns:
        HTML string for the table.
    """
    html_parts = [f'<table class="{css_class}">']
    if include_header:
        header = ''.join(f'<th>{escape(safe_str(col))}</th>' for col in frame.columns)
        html_parts.append(f'<tr>{header}</tr>')
    for row in frame.itertuples(index=False, name=None):
        cells = ''.join(f'<td>{escape(safe_str(value))}</td>' for value in row)
        html_parts.append(f'<tr>{cells}</tr>')
    html_parts.append('</table>')
    return '\n'.join(html_parts)


def single_column_table(lines, css_class):
    """Render a list of lines as a one-column table without a header."""
    return render_html_table(pd.DataFrame({'lines': list(lines)}), css_class,
                             include_header=False)


def block_header(block):
    """Return the <h5> header announcing a block."""
    return f"<h5>{escape(safe_str(block.get('Description', '')))}</h5><br>"


# =============================================================================
# APPENDIX LETTERING
# =============================================================================

def appendix_lettering(number, base=ALPHABET_SIZE):
    """
    Convert a positive integer into an alphabetic appendix index.

    The number is written as a bijective base-``base`` numeral whose
    digits are the letters A..Z, so there is no zero digit:
    1 -> A, 26 -> Z, 27 -> AA, 52 -> AZ, 53 -> BA, 1000 -> ALL.

    Args:
        number: Positive integer to convert.
        base: Alphabet size, between 1 and 26.

    Returns:
        The appendix letters.

    Raises:
        ValueError: If number is below 1 or base is out of range.
    """
    if number < 1:
        raise ValueError(f"Appendix number must be positive, got {number}")
    if not 1 <= base <= ALPHABET_SIZE:
        raise ValueError(f"Alphabet size must be between 1 and {ALPHABET_SIZE}, got {base}")

    letters = ''
    remaining = number
    while remaining > 0:
        remaining -= 1
        letters = string.ascii_uppercase[remaining % base] + letters
        remaining //= base
    return letters


# =============================================================================
# BLOCK ORDERING
# =============================================================================

def block_list(blocks):
    """Return blocks as a list; a dict of blocks is taken in value order."""
    if isinstance(blocks, dict):
        return list(blocks.values())
    return list(blocks)


def block_ordering(blocks, flow=None):
    """
    Determine the order in which blocks are visited.

    Without a flow the blocks are visited in declaration order. With a
    flow, each flow entry is matched against the block IDs and kept only
    when exactly one block carries that ID.

    Args:
        blocks: List (or dict) of survey blocks.
        flow: Optional list of block IDs in display order.

    Returns:
        List of 0-based block indices.
    """
    blocks = block_list(blocks)
    if flow is None:
        return list(range(len(blocks)))

    ordering = []
    for block_id in flow:
        matches = [
            index for index, block in enumerate(blocks)
            if isinstance(block, dict) and 'ID' in block and block['ID'] == block_id
        ]
        if len(matches) == 1:
            ordering.append(matches[0])
        else:
            logger.warning(
                f"Flow entry {block_id!r} matched {len(matches)} blocks; skipping it"
            )
    return ordering


def iter_ordered_blocks(blocks, flow=None):
    """
    Yield (block, elements) for every non-empty block in display order.
    """
    blocks = block_list(blocks)
    for index in block_ordering(blocks, flow):
        block = blocks[index]
        elements = block.get('BlockElements') or []
        if not elements:
            logger.debug(f"Block {block.get('ID', index)!r} has no elements")
            continue
        yield block, elements


# =============================================================================
# QUESTION CLASSIFICATION
# =============================================================================

class QuestionKind(Enum):
    """How a block element is treated by the reports."""
    SKIP = 'skip'
    DESCRIPTIVE = 'descriptive'
    TEXT_ENTRY = 'text_entry'
    HAS_TEXT_COLUMNS = 'has_text_columns'
    STANDARD = 'standard'


def question_type(question):
    """Return Payload.QuestionType, or None if the element has none."""
    payload = question.get('Payload')
    if not isinstance(payload, dict):
        return None
    return payload.get('QuestionType')


def is_question(element):
    """Check that a block element carries a Payload with a QuestionType."""
    return question_type(element) is not None


def question_payload(question):
    """
    Return the question's Payload.

    Raises:
        MalformedQuestionError: If the element has no Payload.
    """
    payload = question.get('Payload')
    if not isinstance(payload, dict):
        raise MalformedQuestionError(
            f"Block element {question.get('ID', '<unknown>')!r} has no Payload"
        )
    return payload


def export_tag(question):
    """Return the question's DataExportTag."""
    return safe_str(question_payload(question).get('DataExportTag', ''))


def question_text(question):
    """Return the cleaned question text, cleaning the raw text if needed."""
    payload = question_payload(question)
    if 'QuestionTextClean' in payload:
        return safe_str(payload['QuestionTextClean'])
    return clean_html(payload.get('QuestionText', ''))


def response_columns(question):
    """Return the ids of the question's response columns."""
    responses = question.get('Responses')
    if responses is None:
        return []
    return list(responses.columns)


def text_columns(question):
    """Return the response columns that hold free-text answers."""
    return [col for col in response_columns(question) if TEXT_ENTRY_MARKER in str(col)]


def classify_question(question):
    """
    Decide how the reports treat a block element.

    Args:
        question: Block element dictionary.

    Returns:
        The element's QuestionKind.

    Raises:
        MalformedQuestionError: If a question that is not skipped has no
            Payload.QuestionType.
    """
    if is_true(question.get('qtSkip')):
        return QuestionKind.SKIP

    qtype = question_type(question)
    if qtype is None:
        raise MalformedQuestionError(
            f"Block element {question.get('ID', '<unknown>')!r} has no Payload.QuestionType"
        )

    if qtype == 'DB':
        return QuestionKind.DESCRIPTIVE
    if qtype == 'TE':
        return QuestionKind.TEXT_ENTRY
    if text_columns(question):
        return QuestionKind.HAS_TEXT_COLUMNS
    return QuestionKind.STANDARD


def has_display_logic(question):
    """
    Check for display logic on the question or on any choice or answer.
    """
    payload = question.get('Payload')
    if not isinstance(payload, dict):
        return False
    if 'DisplayLogic' in payload:
        return True
    for key in ('Choices', 'Answers'):
        if any(isinstance(entry, dict) and 'DisplayLogic' in entry
               for entry in entries(payload.get(key))):
            return True
    return False


def is_mc_single_answer(question):
    """Check for a single answer multiple choice question."""
    payload = question.get('Payload') or {}
    return (payload.get('QuestionType') == 'MC'
            and payload.get('Selector') in SINGLE_ANSWER_SELECTORS)


def has_multiple_text_entry_choices(question):
    """Check whether more than one choice offers a text entry box."""
    payload = question.get('Payload') or {}
    text_entry_choices = [
        choice for choice in entries(payload.get('Choices'))
        if isinstance(choice, dict) and is_true(choice.get('TextEntry'))
    ]
    return len(text_entry_choices) > 1


def is_multi_text_single_answer(question):
    """
    Check for a single answer multiple choice question with several text
    entry choices.

    The response export stores all of their text in columns that cannot be
    told apart reliably, so these questions are not tabled automatically.
    """
    return is_mc_single_answer(question) and has_multiple_text_entry_choices(question)


# =============================================================================
# QUESTION DESCRIPTIONS
# =============================================================================

def description_lines(question):
    """
    Build the lines of a question's description table.

    Args:
        question: Block element dictionary with a Payload.

    Returns:
        List of strings: export tag, question text, notes, a display logic
        referral and messages about results availability and text entry
        components.
    """
    tag = export_tag(question)
    lines = [f"Export Tag: {tag}", question_text(question)]

    notes = question.get('qtNotes')
    if isinstance(notes, (list, tuple)):
        lines.extend(safe_str(note) for note in notes)
    elif notes:
        lines.append(safe_str(notes))

    if has_display_logic(question):
        lines.append(DISPLAY_LOGIC_REFERRAL)

    is_text_entry = question_type(question) == 'TE'
    has_table = question.get('Table') is not None
    n_text_columns = len(text_columns(question))

    if is_text_entry and not has_table:
        lines.append(f"Question {tag} is a text entry question. See Appendix.")
    elif not has_table and n_text_columns != len(response_columns(question)):
        lines.append(
            f"The results table for Question {tag} could not be automatically processed."
        )

    if not is_text_entry:
        if n_text_columns == 1:
            lines.append("This question has a text entry component. See Appendix.")
        elif n_text_columns > 1:
            lines.append("This question has multiple text entry components. See Appendices.")

    return lines


def question_description(question):
    """
    Render a question's description and, if present, its results table.

    Returns:
        List of HTML fragments.
    """
    tables = [
        single_column_table(description_lines(question), DESCRIPTION_TABLE_CLASS),
        '&nbsp;',
    ]
    results = question.get('Table')
    if results is not None:
        tables.append(render_html_table(results, RESULTS_TABLE_CLASS))
    tables.append('<br><br>')
    return tables


# =============================================================================
# RESULTS TABLES REPORT
# =============================================================================

def create_html_results_tables(blocks, flow=None, include_block_headers=True):
    """
    Create the results tables report.

    Every question that is neither skipped nor a descriptive box gets its
    description table followed by its results table, in display order.

    Args:
        blocks: List of survey blocks with questions in BlockElements.
        flow: Optional list of block IDs in display order.
        include_block_headers: Insert an <h5> header before each block.

    Returns:
        HTML string of the report.
    """
    tables = ['<br>']
    n_questions = 0

    for block, elements in iter_ordered_blocks(blocks, flow):
        if include_block_headers:
            tables.append(block_header(block))

        for question in elements:
            # Page breaks and other non-question elements carry no type
            if not is_question(question):
                continue
            kind = classify_question(question)
            if kind in (QuestionKind.SKIP, QuestionKind.DESCRIPTIVE):
                continue
            tables.extend(question_description(question))
            n_questions += 1

    logger.info(f"Results report: {n_questions} questions")
    return '\n'.join(tables)


# =============================================================================
# TEXT APPENDICES
# =============================================================================

def choice_text_from_response_column(column, question=None, original_first_row=None):
    """
    Find the choice text that a response column belongs to.

    Columns such as ``Q5_4_TEXT`` or ``Q5_4`` are looked up in the
    question's Choices first. Otherwise the CSV header label of the
    column ("Question - Choice - Text") is split and its last meaningful
    segment used.

    Args:
        column: Response column id.
        question: Question the column belongs to.
        original_first_row: Mapping of column id to CSV header label.

    Returns:
        The choice text, or '' if it cannot be determined.
    """
    column = str(column)

    if question is not None and isinstance(question.get('Payload'), dict):
        payload = question['Payload']
        prefix = f"{safe_str(payload.get('DataExportTag', ''))}_"
        remainder = column[len(prefix):] if column.startswith(prefix) else ''
        if remainder.endswith(f"_{TEXT_ENTRY_MARKER}"):
            remainder = remainder[:-len(TEXT_ENTRY_MARKER) - 1]
        # Matrix columns (row_answer) are resolved from the header label
        if remainder and '_' not in remainder:
            choice_id = remainder
            choices = payload.get('Choices')
            choice = None
            if isinstance(choices, dict):
                choice = choices.get(choice_id)
            elif isinstance(choices, (list, tuple)) and choice_id.isdigit():
                # Lists are addressed by 1-based position
                position = int(choice_id) - 1
                if 0 <= position < len(choices):
                    choice = choices[position]
            if isinstance(choice, dict):
                display = clean_html(choice.get('Display', ''))
                if display:
                    return display

    if original_first_row is not None and column in original_first_row:
        label = clean_html(safe_str(original_first_row[column]))
        parts = [part.strip() for part in re.split(r'\s+-\s+', label) if part.strip()]
        if parts and parts[-1].lower() == 'text':
            parts = parts[:-1]
        if len(parts) > 1:
            return parts[-1]

    return ''


def appendix_question_text(question, column, original_first_row=None):
    """Question text suffixed with the column's choice text, when known."""
    text = question_text(question)
    choice_text = choice_text_from_response_column(column, question, original_first_row)
    if choice_text:
        return f"{text}-{choice_text}"
    return text


def appendix_title(appendix_number):
    """Return the "Appendix X" title for an appendix number."""
    return f"Appendix {appendix_lettering(appendix_number)}"


def coded_comment_count(frequencies):
    """
    Read how many comments were categorized from a coded comments table.

    The count is the second column of the table's last row.

    Raises:
        MalformedQuestionError: If the table has no such cell or it is
            not a number.
    """
    if frequencies is None or frequencies.shape[0] == 0 or frequencies.shape[1] < 2:
        raise MalformedQuestionError("Coded comments table has no count cell")
    value = frequencies.iloc[-1, 1]
    try:
        return int(float(value))
    except (TypeError, ValueError) as e:
        raise MalformedQuestionError(f"Coded comments count {value!r} is not a number") from e


def table_html_coded_comments(question, cc_index, appendix_number, original_first_row=None):
    """
    Create a text appendix for a set of coded comments.

    The table has two columns. Its header block carries the appendix title,
    the question text and a "Coded Comments" tag; it is followed by the
    "Responses"/"N" row and the category frequencies.

    Args:
        question: Question owning the coded comments.
        cc_index: Index into question['CodedComments'].
        appendix_number: Number of this appendix in the report.
        original_first_row: Mapping of column id to CSV header label.

    Returns:
        List of HTML fragments.
    """
    column, frequencies = question['CodedComments'][cc_index]
    tag = export_tag(question)
    column_names = [f"Export Tag: {tag}", f"Export Tag: {tag} "]

    header = [
        appendix_title(appendix_number),
        appendix_question_text(question, column, original_first_row),
        CODED_COMMENTS_TAG,
        '',
    ]
    rows = [[line, line] for line in header]
    rows.append(['Responses', 'N'])
    rows.extend(list(row) for row in frequencies.iloc[:, :2].itertuples(index=False, name=None))

    appendix = pd.DataFrame(rows, columns=column_names)
    return [render_html_table(appendix, TEXT_APPENDIX_CLASS), '<br>']


def table_no_respondents(question, appendix_number):
    """
    Create the standard "No respondents answered this question" appendix.

    Returns:
        List of HTML fragments.
    """
    appendix = pd.DataFrame({
        f"Export Tag: {export_tag(question)}": [
            appendix_title(appendix_number),
            question_text(question),
            VERBATIM_DISCLAIMER,
            '',
            NO_RESPONDENTS_MESSAGE,
        ]
    })
    return [render_html_table(appendix, TEXT_APPENDIX_CLASS), '<br>']


def _table_verbatim(question, responses, appendix_number, original_first_row):
    # One header column per response column, stacked above the raw rows
    title = appendix_title(appendix_number)
    response_n = f"Responses: ({len(responses)})"
    header_columns = [
        [
            title,
            appendix_question_text(question, column, original_first_row),
            VERBATIM_DISCLAIMER,
            '',
            response_n,
        ]
        for column in responses.columns
    ]
    rows = [list(row) for row in zip(*header_columns)]
    rows.extend(list(row) for row in responses.itertuples(index=False, name=None))

    column_names = [f"Export Tag: {column}" for column in responses.columns]
    appendix = pd.DataFrame(rows, columns=column_names)
    return [render_html_table(appendix, TEXT_APPENDIX_CLASS), '<br>']


def table_text_entry(question, responses, appendix_number, original_first_row=None):
    """
    Create the text appendix of a text entry question.

    The appendix has one column per text entry component and one row per
    respondent.

    Args:
        question: The text entry question.
        responses: Cleaned DataFrame of its responses.
        appendix_number: Number of this appendix in the report.
        original_first_row: Mapping of column id to CSV header label.

    Returns:
        List of HTML fragments.
    """
    return _table_verbatim(question, responses, appendix_number, original_first_row)


def table_non_text_entry(question, responses, appendix_number, original_first_row=None):
    """
    Create the text appendix for the text component of another question
    type, e.g. the "Other (please specify)" box of a multiple choice.
    """
    return _table_verbatim(question, responses, appendix_number, original_first_row)


def table_mcsa_multitext(question):
    """Create the notice for a question whose text components can't be split."""
    notice = pd.DataFrame({
        f"Export Tag: {export_tag(question)}": [
            question_text(question),
            '',
            MCSA_MULTITEXT_MESSAGE,
        ]
    })
    return [render_html_table(notice, TEXT_APPENDIX_CLASS), '<br>']


def _text_entry_appendices(question, appendix_number, original_first_row):
    responses = clean_responses(question['Responses'])
    if len(responses) == 0:
        return table_no_respondents(question, appendix_number), appendix_number + 1
    tables = table_text_entry(question, responses, appendix_number, original_first_row)
    return tables, appendix_number + 1


def _text_column_appendices(question, appendix_number, original_first_row):
    tables = []
    for column in text_columns(question):
        # Only the one column is copied out of the response set
        responses = clean_responses(question['Responses'][[column]])
        if len(responses) == 0:
            tables.extend(table_no_respondents(question, appendix_number))
            appendix_number += 1
            continue

        if is_multi_text_single_answer(question):
            logger.debug(f"{export_tag(question)}: text components cannot be split")
            tables.extend(table_mcsa_multitext(question))
            break

        tables.extend(table_non_text_entry(question, responses, appendix_number,
                                           original_first_row))
        appendix_number += 1
    return tables, appendix_number


def question_text_appendices(question, appendix_number, original_first_row=None,
                             n_threshold=DEFAULT_N_THRESHOLD):
    """
    Create all text appendices for one question.

    Coded comments above the threshold come first, followed by the
    verbatim appendices unless the question is flagged verbatimSkip.

    Args:
        question: Block element dictionary.
        appendix_number: Number the next appendix will get.
        original_first_row: Mapping of column id to CSV header label.
        n_threshold: Minimum categorized count (exclusive) for coded comments.

    Returns:
        Tuple of (list of HTML fragments, next appendix number).

    Raises:
        MalformedQuestionError: If a question with comments or responses has
            no Payload.QuestionType.
    """
    if is_true(question.get('qtSkip')):
        return [], appendix_number

    tables = []

    for cc_index, (column, frequencies) in enumerate(question.get('CodedComments') or []):
        count = coded_comment_count(frequencies)
        if count > n_threshold:
            tables.extend(table_html_coded_comments(question, cc_index, appendix_number,
                                                    original_first_row))
            appendix_number += 1
        else:
            logger.debug(f"{export_tag(question)}: {column} has only {count} coded comments")

    if is_true(question.get('verbatimSkip')) or not response_columns(question):
        return tables, appendix_number

    kind = classify_question(question)
    if kind is QuestionKind.TEXT_ENTRY:
        fragments, appendix_number = _text_entry_appendices(
            question, appendix_number, original_first_row)
    elif (kind is QuestionKind.HAS_TEXT_COLUMNS
          or (kind is QuestionKind.DESCRIPTIVE and text_columns(question))):
        fragments, appendix_number = _text_column_appendices(
            question, appendix_number, original_first_row)
    elif kind in (QuestionKind.SKIP, QuestionKind.DESCRIPTIVE, QuestionKind.STANDARD):
        fragments = []
    else:
        raise ValueError(f"Unhandled question kind: {kind}")

    tables.extend(fragments)
    return tables, appendix_number


def text_appendices_table(blocks, original_first_row=None, flow=None,
                          n_threshold=DEFAULT_N_THRESHOLD):
    """
    Create the text appendices report.

    Appendices are lettered A, B, ..., Z, AA, ... in display order; the
    numbering starts afresh with each call.

    Args:
        blocks: List of survey blocks with questions in BlockElements.
        original_first_row: Mapping of column id to CSV header label.
        flow: Optional list of block IDs in display order.
        n_threshold: Minimum categorized count (exclusive) for coded comments.

    Returns:
        HTML string of the report.
    """
    tables = []
    appendix_number = 1

    for block, elements in iter_ordered_blocks(blocks, flow):
        tables.append(block_header(block))
        for question in elements:
            fragments, appendix_number = question_text_appendices(
                question, appendix_number, original_first_row, n_threshold)
            tables.extend(fragments)

    logger.info(f"Text appendices report: {appendix_number - 1} appendices")
    return '\n'.join(tables)


# =============================================================================
# DISPLAY LOGIC REPORT
# =============================================================================

def logic_descriptions(logic):
    """
    Collect the Description texts of a QSF logic structure.

    QSF logic nests conditions inside numbered condition sets, so the
    structure is walked recursively in stored order.
    """
    descriptions = []
    if isinstance(logic, dict):
        description = logic.get('Description')
        if isinstance(description, str):
            descriptions.append(clean_html(description))
        for value in logic.values():
            if isinstance(value, (dict, list)):
                descriptions.extend(logic_descriptions(value))
    elif isinstance(logic, list):
        for item in logic:
            descriptions.extend(logic_descriptions(item))
    return descriptions


def display_logic_from_question(question):
    """
    List the display logic of a question and of its choices and answers.

    Returns:
        List of lines, each group introduced by a heading line.
    """
    payload = question.get('Payload')
    if not isinstance(payload, dict):
        return []

    lines = []
    if 'DisplayLogic' in payload:
        lines.append('Question Display Logic:')
        lines.extend(logic_descriptions(payload['DisplayLogic']))

    for label, key in (('Choice', 'Choices'), ('Answer', 'Answers')):
        for entry in entries(payload.get(key)):
            if isinstance(entry, dict) and 'DisplayLogic' in entry:
                lines.append(f"{label} Display Logic for {clean_html(entry.get('Display', ''))}:")
                lines.extend(logic_descriptions(entry['DisplayLogic']))
    return lines


def skip_logic_from_question(question):
    """List the skip logic of a question under a single marker line."""
    payload = question.get('Payload')
    if not isinstance(payload, dict) or 'SkipLogic' not in payload:
        return []
    lines = [SKIP_LOGIC_MARKER]
    for skip in entries(payload['SkipLogic']):
        if isinstance(skip, dict):
            lines.append(clean_html(skip.get('Description', '')))
    return lines


def tabelize_display_logic(blocks, flow=None):
    """
    Create the display logic report.

    Each question with display or skip logic gets a table listing its
    export tag, its text and its logic. Questions without logic are left
    out.

    Args:
        blocks: List of survey blocks with questions in BlockElements.
        flow: Optional list of block IDs in display order.

    Returns:
        HTML string of the report.
    """
    tables = []
    for block, elements in iter_ordered_blocks(blocks, flow):
        for question in elements:
            if not isinstance(question.get('Payload'), dict):
                continue
            logic = display_logic_from_question(question) + skip_logic_from_question(question)
            if len(logic) > 1:
                lines = [export_tag(question), question_text(question)] + logic
                tables.append(single_column_table(lines, SURVEY_LOGIC_CLASS))
                tables.append('<br>')

    logger.info(f"Display logic report: {len(tables) // 2} questions with logic")
    return '\n'.join(tables)


# =============================================================================
# PROCESSING SUMMARY
# =============================================================================

def flatten_questions(blocks):
    """Return every question of every block, in declaration order."""
    return [
        element
        for block in block_list(blocks)
        for element in (block.get('BlockElements') or [])
        if is_question(element)
    ]


def uncodeable_questions_message(questions):
    """
    Create a message naming the questions that have no results table.

    Text entry questions and descriptive boxes are not expected to have a
    results table and are not listed.

    Args:
        questions: List of questions with results inserted.

    Returns:
        HTML message string.
    """
    uncodeable = [
        export_tag(question)
        for question in questions
        if is_question(question)
        and question.get('Table') is None
        and question['Payload'].get('QuestionType') not in ('TE', 'DB')
        and question['Payload'].get('Selector') != 'TE'
    ]

    if uncodeable:
        message = ("The following questions could not be automatically processed: "
                   + ', '.join(uncodeable))
    else:
        message = "All questions were successfully processed!"
    return f"<b>{message}</b>"


# =============================================================================
# INPUT LOADING
# =============================================================================

def frame_from_json(value):
    """
    Build a DataFrame from its JSON form.

    Accepts ``{"columns": [...], "data": [[...]]}``, a mapping of column to
    values, or a list of row records.

    Raises:
        ValueError: If the value has none of these forms.
    """
    if value is None or isinstance(value, pd.DataFrame):
        return value
    if isinstance(value, dict) and 'columns' in value and 'data' in value:
        return pd.DataFrame(value['data'], columns=value['columns'])
    if isinstance(value, (dict, list)):
        return pd.DataFrame(value)
    raise ValueError(f"Cannot build a table from {type(value).__name__}")


def prepare_question(element):
    """Convert the tabular members of a decoded block element to DataFrames."""
    question = dict(element)
    for key in ('Responses', 'Table'):
        if key in question:
            question[key] = frame_from_json(question[key])
    if 'CodedComments' in question:
        question['CodedComments'] = [
            (column, frame_from_json(frequencies))
            for column, frequencies in question['CodedComments']
        ]
    return question


def load_survey(path):
    """
    Load a decoded survey from a JSON file.

    The document holds ``Blocks`` and optionally ``Flow`` and
    ``OriginalFirstRow``; a bare list is taken as the blocks.

    Args:
        path: Path to the JSON file.

    Returns:
        Tuple of (blocks, flow, original_first_row).

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValueError: If the document has no blocks.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"File not found: {path}")

    logger.info(f"Loading survey: {path}")
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    if isinstance(data, list):
        blocks, flow, original_first_row = data, None, None
    elif isinstance(data, dict) and 'Blocks' in data:
        blocks = data['Blocks']
        flow = data.get('Flow')
        original_first_row = data.get('OriginalFirstRow')
    else:
        raise ValueError(f"No survey blocks found in {path}")

    prepared = []
    for block in block_list(blocks):
        block = dict(block)
        block['BlockElements'] = [
            prepare_question(element) for element in block.get('BlockElements') or []
        ]
        prepared.append(block)

    logger.info(f"Loaded {len(prepared)} blocks")
    return prepared, flow, original_first_row


# =============================================================================
# MAIN PROCESSING
# =============================================================================

def process_survey(input_path, output_dir='.', include_block_headers=True,
                   n_threshold=DEFAULT_N_THRESHOLD):
    """
    Load a decoded survey and write its three HTML reports.

    Args:
        input_path: Path to the decoded survey JSON.
        output_dir: Directory the reports are written to.
        include_block_headers: Insert block headers in the results report.
        n_threshold: Minimum categorized count (exclusive) for coded comments.

    Returns:
        Tuple of (block_count, question_count, uncodeable questions message).
    """
    blocks, flow, original_first_row = load_survey(input_path)

    reports = {
        'results': create_html_results_tables(blocks, flow, include_block_headers),
        'appendices': text_appendices_table(blocks, original_first_row, flow, n_threshold),
        'logic': tabelize_display_logic(blocks, flow),
    }

    os.makedirs(output_dir, exist_ok=True)
    for name, html in reports.items():
        path = os.path.join(output_dir, REPORT_FILES[name])
        with open(path, 'w', encoding='utf-8') as f:
            f.write(html)
        logger.info(f"Wrote {path}")

    questions = flatten_questions(blocks)
    message = uncodeable_questions_message(questions)
    logger.info(strip_bold(message))

    return len(blocks), len(questions), message


# =============================================================================
# COMMAND LINE INTERFACE
# =============================================================================

def print_usage():
    print("Qualtrics HTML Results")
    print("")
    print("Usage: python qualtrics_html_results.py [options] survey.json")
    print("")
    print("Options:")
    print("  -o, --output DIR     Output directory (default: current directory)")
    print("  -n, --threshold N    Minimum coded comments for an appendix (default: 15)")
    print("      --no-headers     Leave block headers out of the results report")
    print("  -d, --debug          Verbose logging")
    print("  -l, --log FILE       Write debug log to file")
    print("  -h, --help           Show this help message")


def main():
    """Main entry point for command line usage."""
    args = sys.argv[1:]
    input_path = None
    output_dir = '.'
    n_threshold = DEFAULT_N_THRESHOLD
    include_block_headers = True
    debug = False
    log_file = None

    i = 0
    while i < len(args):
        arg = args[i]

        if arg in ('-d', '--debug'):
            debug = True
        elif arg == '--no-headers':
            include_block_headers = False
        elif arg in ('-o', '--output'):
            if i + 1 < len(args):
                output_dir = args[i + 1]
                i += 1
        elif arg in ('-n', '--threshold'):
            if i + 1 < len(args):
                try:
                    n_threshold = int(args[i + 1])
                except ValueError:
                    print(f"Error: threshold must be an integer, got {args[i + 1]!r}")
                    sys.exit(1)
                i += 1
        elif arg in ('-l', '--log'):
            log_file = args[i + 1] if i + 1 < len(args) else 'debug.log'
            i += 1
        elif arg in ('-h', '--help'):
            print_usage()
            sys.exit(0)
        elif not arg.startswith('-'):
            if input_path is None:
                input_path = arg

        i += 1

    if not input_path:
        print("Error: No input survey file specified")
        print("Run with --help for usage information")
        sys.exit(1)

    setup_logging(debug, log_file)

    try:
        n_blocks, n_questions, message = process_survey(
            input_path, output_dir,
            include_block_headers=include_block_headers,
            n_threshold=n_threshold
        )
        print(f"\nGenerated reports in: {output_dir}")
        print(f"   Blocks: {n_blocks}")
        print(f"   Questions: {n_questions}")
        print(f"   {strip_bold(message)}")
    except Exception as e:
        logger.exception("Failed")
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
