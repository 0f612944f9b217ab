"""oracle 各操作的 system prompt"""

CODE_DIALECTS = {
    "web": (
        "Python code for Playwright's async API. A `page` object (playwright.async_api.Page) is in scope; "
        "every call must be awaited, e.g. `await page.fill('#email', 'user@example.com', timeout=5000)`. "
        "Prefer stable selectors: ids, names, roles, visible text, or the `data-agent-id` attribute "
        "shown in square brackets in the element list, e.g. `await page.click('[data-agent-id=\"12\"]')`."
    ),
    "windows": (
        "Python code driving a Windows UI Automation tree. These coroutines are in scope: "
        "`await tap(xpath)`, `await type_text(xpath, text, mode='overwrite'|'append')`, "
        "`await scroll(xpath, direction='up'|'down')`. Each xpath addresses an element of the UI tree shown."
    ),
}

CLASSIFY_START_LOCATION = """
As an AI assistant, choose where an automation agent should start in order to reach the user's end goal.

Inputs (JSON):
- "endGoal": the user's goal in natural language.
- "surfaceKind": "web" (answer with an absolute URL, e.g. a search engine or the target site's home page)
  or "windows" (answer with the name of an installed tool).
- "candidates": optional list of allowed start locations; when present you must answer with one of them.

Output: a JSON object {"startPage": "<location>", "rationale": "<one sentence>"}
"""

PREDICT_NEXT_ACTION = """
As an AI assistant, predict the single next action that moves the user closest to the end goal.

Inputs (JSON):
- "endGoal": the user's goal.
- "surface": a text description of the current page or window (location, title, interactive elements, content).
- "previousActions": the ordered list of actions already taken. "actionSuccess": false marks an action that failed;
  avoid repeating a failed action unless you are confident it is still the best choice.
- "allowedActionTypes": the action types you may use.

Output: a JSON object
{
  "actionType": "<one of allowedActionTypes>",
  "actionTarget": "<the element the action applies to>",
  "actionDescription": "<what the action does and why>",
  "actionValue": "<text to type, key to press or scroll direction; null otherwise>"
}
"""

GENERATE_CODE = """
As an AI assistant, write automation code that performs the user's next action on the current surface.

Code dialect: {dialect}

Inputs (JSON):
- "endGoal", "surface", "nextAction": the goal, the current surface description and the action to perform.
- "previousAttempts": code that was already tried for this action and the error it raised. Do not repeat it.

Output: a JSON object {{"codeSet": ["<candidate 1>", "<candidate 2>", ...]}} with up to {max_candidates}
alternative snippets. Each snippet must perform the whole action on its own and contain no imports.
"""

SORT_CODE_BY_RELEVANCE = """
As an AI Assistant, sort the array of automation code snippets in 'codeSet'
based on their relevance to the user's end goal, the current location, and the next user action.

Inputs (JSON): "endGoal", "currentLocation", "nextAction", "codeSet".

Output: a JSON object {"codeSetByRelevance": [...]} containing the same snippets, most relevant first.
"""

ACTION_FEEDBACK = """
As an AI assistant, decide whether the action just taken had the expected effect.

Inputs (JSON):
- "takenAction": the action that was executed.
- "beforeSurface" and "afterSurface": descriptions of the surface before and after the action.

Output: a JSON object
{
  "actionSuccess": true|false,
  "pageStateChanges": "<what changed between the two states>",
  "newInformation": "<facts visible after the action that matter for the goal>"
}
If nothing relevant changed, "actionSuccess" must be false.
"""

GOAL_CHECK = """
As an AI assistant, decide whether the user's end goal has been met on the current surface.

Inputs (JSON): "endGoal", "surface", "newInformation".

Output: a JSON object
{
  "endGoalMet": true|false,
  "relevantData": [["<label>", "<value>"], ...]
}
"relevantData" lists the facts that answer the goal, e.g. [["Product X", "$19.99"]].
"""
