# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
import json
import re

# Third-Party: Google & AI
from google import genai

# Local
from scoring import fallback_match


DEFAULT_MODEL = "gemini-2.5-flash-lite"


# ============================================================================
# TEXT SERVICE
# ============================================================================

class GeminiTextService:
    """Prompt in, text out. No retries; failures propagate to the caller."""

    def __init__(self, client, model: str = DEFAULT_MODEL):
        self.client = client
        self.model = model

    @classmethod
    def from_api_key(cls, api_key: str | None, model: str = DEFAULT_MODEL):
        return cls(genai.Client(api_key=api_key), model=model)

    def generate(self, prompt: str, json_output: bool = False, temperature: float | None = None) -> str:
        config = {}
        if json_output:
            config["response_mime_type"] = "application/json"
        if temperature is not None:
            config["temperature"] = temperature
        resp = self.client.models.generate_content(
            model=self.model,
            contents=prompt,
            config=config or None,
        )
        return (getattr(resp, "text", None) or "").strip()


class AIResponseError(ValueError):
    """The text service answered, but not with anything we can use."""


# ============================================================================
# JSON SALVAGE
# ============================================================================

def _first_balanced(s: str) -> str | None:
    """Return the first balanced {...} or [...] substring, skipping string literals."""
    start = None
    stack = []
    in_str = False
    escaped = False
    pairs = {"{": "}", "[": "]"}
    for i, ch in enumerate(s):
        if start is None:
            if ch in pairs:
                start = i
                stack.append(pairs[ch])
            continue
        if in_str:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch in pairs:
            stack.append(pairs[ch])
        elif ch in "}]":
            if not stack or stack[-1] != ch:
                return None
            stack.pop()
            if not stack:
                return s[start : i + 1]
    return None


def parse_json_lenient(s: str):
    """Parse JSON with fallback extraction. Returns None when nothing decodes."""
    if not s:
        return None
    try:
        return json.loads(s)
    except (TypeError, ValueError):
        pass
    # Strip markdown fences the model sometimes wraps around JSON
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", s)
    if fenced:
        try:
            return json.loads(fenced.group(1))
        except ValueError:
            pass
    candidate = _first_balanced(s)
    if candidate:
        try:
            return json.loads(candidate)
        except ValueError:
            return None
    return None


def _items(data, *keys) -> list:
    """Pull a list out of either a bare array or an object wrapping one."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for k in keys:
            if isinstance(data.get(k), list):
                return data[k]
    return []


# ============================================================================
# QUIZ GENERATION
# ============================================================================

QUESTION_TYPES = ("multiple-choice", "true-false", "short-answer")


def quiz_prompt(topic: str, difficulty: str, count: int, types: list[str]) -> str:
    return (
        "You are an expert educator creating high-quality quiz questions. "
        f"Generate a quiz to test understanding of: {topic}\n\n"
        "Requirements:\n"
        f"- Difficulty level: {difficulty}\n"
        f"- Number of questions: {count}\n"
        f"- Question types: {', '.join(types)}\n"
        "- Each question should test practical understanding, not just memorization\n"
        "- Include clear explanations for correct answers\n\n"
        "Respond with JSON only, in this exact shape:\n"
        "{\n"
        '  "questions": [\n'
        '    {"id": "q1", "type": "multiple-choice", "question": "...", '
        '"options": ["A", "B", "C", "D"], "correctAnswer": "B", "explanation": "...", "points": 10},\n'
        '    {"id": "q2", "type": "true-false", "question": "...", "correctAnswer": true, '
        '"explanation": "...", "points": 5}\n'
        "  ],\n"
        '  "estimatedMinutes": 10\n'
        "}\n"
        "For true-false questions correctAnswer must be a JSON boolean. "
        "For multiple-choice questions correctAnswer must be one of the options, copied exactly."
    )


def normalize_quiz_questions(raw: str, count: int) -> tuple[list[dict], int | None]:
    """Clean model output into stored questions.

    Raises AIResponseError when no usable question survives.
    """
    data = parse_json_lenient(raw)
    items = _items(data, "questions", "items")
    cleaned: list[dict] = []
    for q in items:
        if not isinstance(q, dict):
            continue
        text = str(q.get("question") or q.get("prompt") or q.get("q") or "").strip()
        if not text:
            continue
        qtype = str(q.get("type") or "multiple-choice").strip().lower()
        if qtype not in QUESTION_TYPES:
            qtype = "multiple-choice"
        answer = q.get("correctAnswer", q.get("answer"))
        options = None
        if qtype == "multiple-choice":
            options = [str(o).strip() for o in (q.get("options") or []) if str(o).strip()]
            if len(options) < 2:
                continue
            if isinstance(answer, int) and not isinstance(answer, bool) and 0 <= answer < len(options):
                answer = options[answer]
            if answer not in options:
                continue
        elif qtype == "true-false":
            if isinstance(answer, str) and answer.strip().lower() in ("true", "false"):
                answer = answer.strip().lower() == "true"
            if not isinstance(answer, bool):
                continue
        else:
            if answer is None or not str(answer).strip():
                continue
            answer = str(answer).strip()
        try:
            points = int(q.get("points") or 10)
        except (TypeError, ValueError):
            points = 10
        question = {
            "id": f"q{len(cleaned) + 1}",
            "type": qtype,
            "question": text,
            "correctAnswer": answer,
            "explanation": str(q.get("explanation") or "").strip(),
            "points": max(0, points),
        }
        if options is not None:
            question["options"] = options
        cleaned.append(question)
        if len(cleaned) >= count:
            break
    if not cleaned:
        raise AIResponseError("No usable quiz questions in AI response")
    minutes = data.get("estimatedMinutes") if isinstance(data, dict) else None
    return cleaned, minutes if isinstance(minutes, int) else None


# ============================================================================
# LEARNING PATH GENERATION
# ============================================================================

def learning_path_prompt(domain: str, subdomain: str, topic: str) -> str:
    return (
        "You are a curriculum designer. Build a step-by-step learning path.\n\n"
        f"Domain: {domain}\nSubdomain: {subdomain}\nTopic: {topic}\n\n"
        "Return JSON only:\n"
        "{\n"
        '  "name": "...", "description": "...",\n'
        '  "steps": [\n'
        '    {"conceptId": "short-kebab-id", "title": "...", "description": "...",\n'
        '     "resources": [{"title": "...", "description": "...", '
        '"type": "video|article|interactive|exercise", "url": "https://...", '
        '"estimatedTime": 15, "difficulty": "beginner|intermediate|advanced"}]}\n'
        "  ]\n"
        "}\n"
        "Use 4-8 steps ordered from fundamentals to advanced, each with 1-3 free resources."
    )


RESOURCE_TYPES = ("video", "article", "interactive", "quiz", "exercise")


def normalize_learning_path(raw: str, topic: str) -> dict:
    data = parse_json_lenient(raw)
    steps = []
    for s in _items(data, "steps"):
        if not isinstance(s, dict):
            continue
        title = str(s.get("title") or s.get("conceptId") or "").strip()
        if not title:
            continue
        n = len(steps) + 1
        resources = []
        for r_idx, r in enumerate(s.get("resources") or []):
            if not isinstance(r, dict) or not str(r.get("title") or "").strip():
                continue
            rtype = str(r.get("type") or "article").strip().lower()
            resources.append({
                "id": f"res-{n}-{r_idx + 1}",
                "title": str(r.get("title")).strip(),
                "description": str(r.get("description") or "").strip(),
                "type": rtype if rtype in RESOURCE_TYPES else "article",
                "url": str(r.get("url") or "").strip(),
                "estimatedTime": r.get("estimatedTime") if isinstance(r.get("estimatedTime"), int) else None,
                "difficulty": r.get("difficulty") or "beginner",
            })
        steps.append({
            "id": f"step-{n}",
            "conceptId": str(s.get("conceptId") or f"concept-{n}"),
            "title": title,
            "description": str(s.get("description") or "").strip(),
            "order": n,
            "status": "available" if n == 1 else "locked",
            "resources": resources,
        })
    if not steps:
        raise AIResponseError("No usable steps in AI response")
    name = data.get("name") if isinstance(data, dict) else None
    description = data.get("description") if isinstance(data, dict) else None
    return {
        "name": str(name or f"{topic} Learning Path"),
        "description": str(description or f"Personalized learning path for {topic}"),
        "steps": steps,
    }


# ============================================================================
# LEARNING BRANCHES
# ============================================================================

BRANCH_TYPES = ("project-based", "theory-heavy", "fast-track", "comprehensive")
BRANCH_STEP_TYPES = ("project", "video", "reading", "exercise")


def branch_prompt(path: dict, current_step: str, branch_option: str | None, user_preference: str | None) -> str:
    return (
        "You are an adaptive learning path designer. Create alternate learning routes based on "
        "user preferences.\n\n"
        f"Current Learning Path: {path.get('name')}\n"
        f"Topic: {path.get('topic') or path.get('name')}\n"
        f"Current Step: {current_step}\n"
        f"Branch Option: {branch_option or 'not specified'}\n"
        f"User Preference: {user_preference or 'balanced'}\n\n"
        "Valid branch types:\n"
        "- project-based: More hands-on projects\n"
        "- theory-heavy: Deeper conceptual understanding\n"
        "- fast-track: Condensed, essential concepts only\n"
        "- comprehensive: Detailed coverage with examples\n\n"
        "Return JSON only:\n"
        "{\n"
        '  "branches": [\n'
        '    {"name": "...", "type": "project-based", "description": "...", '
        '"difficulty": "beginner|intermediate|advanced", "estimatedHours": 20,\n'
        '     "steps": [{"title": "...", "description": "...", "type": "project|video|reading|exercise", '
        '"estimatedMinutes": 30, "resources": ["..."]}],\n'
        '     "projects": ["..."], "outcomes": ["..."]}\n'
        "  ],\n"
        '  "recommendation": "..."\n'
        "}\n"
        "Create 2-3 distinct branches with 3-5 steps each."
    )


def _strings(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def normalize_branches(raw: str) -> dict:
    data = parse_json_lenient(raw)
    branches = []
    for b in _items(data, "branches"):
        if not isinstance(b, dict) or not str(b.get("name") or "").strip():
            continue
        steps = []
        for s in b.get("steps") or []:
            if not isinstance(s, dict) or not str(s.get("title") or "").strip():
                continue
            stype = str(s.get("type") or "reading").strip().lower()
            minutes = s.get("estimatedMinutes")
            steps.append({
                "stepNumber": len(steps) + 1,
                "title": str(s.get("title")).strip(),
                "description": str(s.get("description") or "").strip(),
                "type": stype if stype in BRANCH_STEP_TYPES else "reading",
                "estimatedMinutes": minutes if isinstance(minutes, int) and not isinstance(minutes, bool) else None,
                "resources": _strings(s.get("resources")),
            })
        if not steps:
            continue
        btype = str(b.get("type") or "").strip().lower()
        hours = b.get("estimatedHours")
        branches.append({
            "id": f"branch_{len(branches) + 1}",
            "name": str(b.get("name")).strip(),
            "type": btype if btype in BRANCH_TYPES else "comprehensive",
            "description": str(b.get("description") or "").strip(),
            "difficulty": b.get("difficulty") or "intermediate",
            "estimatedHours": hours if isinstance(hours, (int, float)) and not isinstance(hours, bool) else None,
            "steps": steps,
            "projects": _strings(b.get("projects")),
            "outcomes": _strings(b.get("outcomes")),
        })
    if not branches:
        raise AIResponseError("No usable branches in AI response")
    recommendation = data.get("recommendation") if isinstance(data, dict) else None
    return {
        "branches": branches,
        "recommendation": str(recommendation or f"We recommend the {branches[0]['name']}"),
    }


def fallback_branches(path: dict) -> dict:
    """Two fixed routes through the path's topic for when the model gives nothing usable."""
    topic = path.get("topic") or path.get("name") or "this topic"
    return {
        "branches": [
            {
                "id": "branch_1",
                "name": "Project-Based Path",
                "type": "project-based",
                "description": "Learn by building practical projects",
                "difficulty": "intermediate",
                "estimatedHours": 20,
                "steps": [{
                    "stepNumber": 1,
                    "title": f"Build a small {topic} project",
                    "description": "Apply what you know in a working project",
                    "type": "project",
                    "estimatedMinutes": 120,
                    "resources": ["Tutorial", "Starter Code"],
                }],
                "projects": [f"{topic} starter project"],
                "outcomes": ["Practical experience", "Portfolio projects"],
            },
            {
                "id": "branch_2",
                "name": "Theory-First Path",
                "type": "theory-heavy",
                "description": "Deep dive into concepts before practice",
                "difficulty": "intermediate",
                "estimatedHours": 25,
                "steps": [{
                    "stepNumber": 1,
                    "title": f"{topic} core concepts",
                    "description": "Understand the fundamentals deeply",
                    "type": "reading",
                    "estimatedMinutes": 60,
                    "resources": ["Documentation", "Articles"],
                }],
                "projects": [],
                "outcomes": ["Strong foundation", "Conceptual clarity"],
            },
        ],
        "recommendation": "Project-Based Path is recommended for hands-on learners",
    }


# ============================================================================
# STUDY-BUDDY MATCHING
# ============================================================================

def match_prompt(requester_name: str, topic: str, skill_level: str, preferences: dict, candidates: list[dict]) -> str:
    lines = []
    for idx, c in enumerate(candidates):
        lines.append(
            f"{idx + 1}. candidateId={c['id']} {c.get('displayName') or 'Anonymous User'} "
            f"({c.get('skillLevel')} level, {c.get('topic')}), preferences: "
            f"{json.dumps(c.get('studyPreferences') or {}, sort_keys=True)}"
        )
    return (
        "You are a study buddy matching assistant. Rate how well each potential study partner "
        "fits the current user.\n\n"
        f"Current User: {requester_name or 'Student'}\n"
        f"- Topic: {topic}\n"
        f"- Skill Level: {skill_level}\n"
        f"- Preferences: {json.dumps(preferences or {}, sort_keys=True)}\n\n"
        "Potential Matches:\n" + "\n".join(lines) + "\n\n"
        "For each match give a compatibility score from 0 to 100 and one friendly sentence "
        "(max 80 characters) explaining why they would study well together.\n"
        "Respond with a JSON array only:\n"
        '[{"candidateId": "id", "score": 85, "reason": "..."}]'
    )


def parse_match_scores(raw: str) -> dict[str, dict]:
    """Map candidateId -> {matchScore, matchReason}; entries that fail validation are dropped."""
    data = parse_json_lenient(raw)
    out: dict[str, dict] = {}
    for m in _items(data, "matches", "results"):
        if not isinstance(m, dict):
            continue
        cid = m.get("candidateId") or m.get("userId")
        score = m.get("score", m.get("matchScore"))
        reason = m.get("reason") or m.get("matchReason")
        if not cid or isinstance(score, bool) or not isinstance(score, (int, float)):
            continue
        if not isinstance(reason, str) or not reason.strip():
            continue
        out[str(cid)] = {
            "matchScore": max(0, min(100, int(round(score)))),
            "matchReason": reason.strip(),
        }
    return out


def score_candidates(text_service, requester_name, topic, skill_level, preferences, candidates):
    """Score candidates through the text service, falling back per candidate.

    Never raises: a service failure or unparseable answer degrades the whole
    batch to the deterministic scorer. Returns (matches, used_ai).
    """
    ai_scores: dict[str, dict] = {}
    used_ai = False
    try:
        raw = text_service.generate(match_prompt(requester_name, topic, skill_level, preferences, candidates))
        ai_scores = parse_match_scores(raw)
        used_ai = bool(ai_scores)
        if not used_ai:
            print("[study-buddy] AI response unusable, using fallback scores", flush=True)
    except Exception as e:
        print("[study-buddy] AI scoring failed, using fallback scores:", e, flush=True)

    matches = []
    for c in candidates:
        scored = ai_scores.get(c["id"]) or fallback_match(preferences, c, topic, skill_level)
        matches.append({
            "userId": c["id"],
            "displayName": c.get("displayName"),
            "photoURL": c.get("photoURL"),
            "topic": c.get("topic"),
            "skillLevel": c.get("skillLevel"),
            "studyPreferences": c.get("studyPreferences") or {},
            **scored,
        })
    matches.sort(key=lambda m: m["matchScore"], reverse=True)
    return matches, used_ai


# ============================================================================
# MOTIVATION, ROADMAPS, RESOURCES, CHAT
# ============================================================================

def motivation_prompt(stats: dict, recent_activity: str | None, struggling_with: str | None) -> str:
    prompt = (
        "You are an enthusiastic and supportive learning coach. Motivate the learner with a "
        "personalized, encouraging message.\n\n"
        "User Context:\n"
        f"- Current streak: {stats.get('currentStreak', 0)} days\n"
        f"- Total points: {stats.get('totalPoints', 0)}\n"
        f"- Level: {stats.get('level', 1)}\n"
    )
    if recent_activity:
        prompt += f"- Recent activity: {recent_activity}\n"
    if struggling_with:
        prompt += f"- Currently struggling with: {struggling_with}\n"
    prompt += (
        "\nWrite 2-3 sentences that acknowledge their progress, encourage them to keep going, "
        "and are specific to their situation. Keep it genuine, uplifting and actionable."
    )
    return prompt


def roadmap_prompt(career_goal: str, current_skills: list[str], experience_level: str, timeframe: str) -> str:
    return (
        "You are an expert career counselor and learning path architect. "
        "Generate a comprehensive, actionable career roadmap.\n\n"
        f"Career Goal: {career_goal}\n"
        f"Current Skills: {', '.join(current_skills) or 'None specified'}\n"
        f"Experience Level: {experience_level}\n"
        f"Timeframe: {timeframe}\n\n"
        "Respond with JSON only:\n"
        "{\n"
        '  "overview": "...",\n'
        '  "phases": [{"phase": 1, "title": "...", "duration": "2 months", "description": "...", '
        '"skills": [], "milestones": [], "resources": []}],\n'
        '  "requiredSkills": {"technical": [], "soft": []},\n'
        '  "projectIdeas": [], "certifications": [], "nextSteps": [],\n'
        '  "estimatedTimeToJob": "6-12 months", "salaryRange": "...", "jobOutlook": "..."\n'
        "}\n"
        "Make it specific, actionable and realistic. Include 3-4 phases."
    )


ROADMAP_FIELDS = (
    "overview", "phases", "requiredSkills", "projectIdeas", "certifications",
    "nextSteps", "estimatedTimeToJob", "salaryRange", "jobOutlook",
)


def normalize_roadmap(raw: str) -> dict:
    data = parse_json_lenient(raw)
    if not isinstance(data, dict) or not isinstance(data.get("phases"), list) or not data["phases"]:
        raise AIResponseError("No roadmap phases in AI response")
    roadmap = {k: data[k] for k in ROADMAP_FIELDS if k in data}
    for idx, phase in enumerate(roadmap["phases"]):
        if isinstance(phase, dict):
            phase.setdefault("phase", idx + 1)
            phase.setdefault("completed", False)
    return roadmap


def resources_prompt(topic: str, difficulty: str, learning_style: str) -> str:
    return (
        "You are a personalized learning resource curator. Recommend the best learning resources "
        "for a student.\n\n"
        f"Topic: {topic}\nDifficulty Level: {difficulty}\nLearning Style: {learning_style}\n\n"
        "Respond with JSON only:\n"
        "{\n"
        '  "recommendations": [{"title": "...", "type": "video|article|interactive|course|documentation", '
        '"description": "...", "difficulty": "...", "estimatedMinutes": 30, "platform": "...", '
        '"url": "https://...", "tags": [], "matchScore": 90, "matchReason": "..."}],\n'
        '  "learningPath": ["Step 1"], "additionalTips": ["Tip 1"]\n'
        "}\n"
        f"Recommend 5-7 free, accessible resources. Prioritize the {learning_style} learning style."
    )


def normalize_recommendations(raw: str) -> dict:
    data = parse_json_lenient(raw)
    recs = []
    for r in _items(data, "recommendations", "items"):
        if not isinstance(r, dict):
            continue
        title = str(r.get("title") or "").strip()
        url = str(r.get("url") or "").strip()
        if not title or not url:
            continue
        recs.append({**r, "title": title, "url": url})
    if not recs:
        raise AIResponseError("No usable recommendations in AI response")
    out = {"recommendations": recs}
    if isinstance(data, dict):
        out["learningPath"] = [str(s) for s in data.get("learningPath") or []]
        out["additionalTips"] = [str(s) for s in data.get("additionalTips") or []]
    return out


def chat_prompt(message: str, history: list[dict], learning_context: str | None) -> str:
    prompt = (
        "You are LearnMate AI, an intelligent and friendly educational assistant that helps "
        "students clarify doubts. Be concise but thorough, use examples and analogies, break "
        "complex topics into simpler concepts, encourage critical thinking, and admit when you "
        "are unsure. Use markdown where it helps.\n\n"
    )
    if learning_context:
        prompt += f"Current Learning Context: {learning_context}\n\n"
    recent = [m for m in history if isinstance(m, dict)][-5:]
    if recent:
        prompt += "Conversation History:\n"
        for m in recent:
            role = "Student" if m.get("role") == "user" else "LearnMate AI"
            prompt += f"{role}: {m.get('content') or ''}\n"
        prompt += "\n"
    prompt += f"Student: {message}\n\nLearnMate AI:"
    return prompt
