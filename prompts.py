"""Prompts for document field extraction and document-grounded chat.

Extraction prompts ask for one JSON object in the ExtractionResult shape;
the parser in extraction.py still copes with prose and "Label: Value" lines.
"""

_JSON_SUFFIX = """

CRITICAL OUTPUT RULES:
- Return ONLY a single valid JSON object. No other text before or after.
- Do NOT wrap in code fences. Just raw JSON.
- Preserve the exact text as it appears (case, punctuation, special characters)."""

IMAGE_EXTRACTION_PROMPT = """Analyze this document image and extract ALL information with high accuracy.

Instructions:
1. Extract EVERY piece of text, including headers, labels, values, logos, signatures, stamps
2. Identify the document type (invoice, receipt, form, etc.)
3. For each piece of information, identify the label (field name) and the value (field content)
4. Detect any logos, signatures, stamps or special marks
5. Note the approximate position of each element (top-left, center, bottom-right, etc.)
6. Give a bounding box for each field as fractions of the page width/height, between 0 and 1
7. Identify table structures if present

Return the data in this JSON format:
{
  "documentType": "invoice/receipt/form/etc",
  "extractedFields": [
    {
      "label": "exact label text as shown",
      "value": "exact value text as shown",
      "type": "text/logo/signature/stamp",
      "position": "top-left/top-center/top-right/middle-left/center/middle-right/bottom-left/bottom-center/bottom-right",
      "confidence": 0.95,
      "boundingBox": {"x": 0.1, "y": 0.1, "width": 0.2, "height": 0.05}
    }
  ],
  "tables": [
    {"position": "position description", "headers": ["col1", "col2"], "rows": [["value1", "value2"]]}
  ],
  "logos": [
    {"description": "company logo description", "position": "position", "text": "any text in logo"}
  ],
  "signatures": [
    {"description": "signature description", "position": "position", "signatory": "name if readable"}
  ],
  "fullText": "complete document text"
}

Be thorough: do not miss ANY text or visual element.""" + _JSON_SUFFIX

TEXT_EXTRACTION_PROMPT = """Extract all label-value pairs from the document text supplied by the user.
Identify the actual field labels and their corresponding values, and classify the document type.

Return JSON in this format:
{
  "documentType": "invoice/receipt/form/etc",
  "extractedFields": [{"label": "field name", "value": "field value", "confidence": 0.95}]
}""" + _JSON_SUFFIX

CHAT_SYSTEM_PROMPT = """You are helping a user analyze a document. Here is the data extracted from it:

{document}

Answer questions based on this data. If the answer is not in the data, say so."""
