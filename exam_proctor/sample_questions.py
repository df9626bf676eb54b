"""Seed question bank used when the service starts with an empty bank."""

from typing import List

from exam_proctor.schemas import Question

SAMPLE_QUESTIONS: List[dict] = [
    {
        "question_id": "q1",
        "text": "What is the output of: print(type([]))?",
        "options": ["<class 'list'>", "<class 'tuple'>", "<class 'dict'>", "<class 'set'>"],
        "correct_answer_index": 0,
        "difficulty": "easy",
        "minimum_expected_time_seconds": 15,
    },
    {
        "question_id": "q2",
        "text": "Which data structure follows the LIFO (Last In, First Out) principle?",
        "options": ["Queue", "Stack", "Heap", "Hash table"],
        "correct_answer_index": 1,
        "difficulty": "easy",
        "minimum_expected_time_seconds": 10,
    },
    {
        "question_id": "q3",
        "text": "What does len({'a': 1, 'b': 2, 'a': 3}) return?",
        "options": ["1", "2", "3", "It raises KeyError"],
        "correct_answer_index": 1,
        "difficulty": "medium",
        "minimum_expected_time_seconds": 20,
    },
    {
        "question_id": "q4",
        "text": "Which sorting algorithm has O(n log n) average-case time complexity?",
        "options": ["Bubble sort", "Quicksort", "Selection sort", "Insertion sort"],
        "correct_answer_index": 1,
        "difficulty": "medium",
        "minimum_expected_time_seconds": 25,
    },
    {
        "question_id": "q5",
        "text": "What is the auxiliary space complexity of a standard merge sort on arrays?",
        "options": ["O(1)", "O(log n)", "O(n)", "O(n^2)"],
        "correct_answer_index": 2,
        "difficulty": "medium",
        "minimum_expected_time_seconds": 30,
    },
    {
        "question_id": "q6",
        "text": "What is the worst-case search time in an unbalanced binary search tree?",
        "options": ["O(1)", "O(log n)", "O(n)", "O(n log n)"],
        "correct_answer_index": 2,
        "difficulty": "hard",
        "minimum_expected_time_seconds": 45,
    },
    {
        "question_id": "q7",
        "text": "Which statement about red-black trees is FALSE?",
        "options": [
            "Every node is either red or black",
            "The root is black",
            "Every leaf is red",
            "A red node never has a red child",
        ],
        "correct_answer_index": 2,
        "difficulty": "hard",
        "minimum_expected_time_seconds": 60,
    },
    {
        "question_id": "q8",
        "text": "What is the amortized cost of list.append in CPython?",
        "options": ["O(1)", "O(n)", "O(log n)", "O(n^2)"],
        "correct_answer_index": 0,
        "difficulty": "hard",
        "minimum_expected_time_seconds": 50,
    },
    {
        "question_id": "q9",
        "text": "Which traversal of a binary search tree visits keys in ascending order?",
        "options": ["Preorder", "Postorder", "Inorder", "Level order"],
        "correct_answer_index": 2,
        "difficulty": "easy",
        "minimum_expected_time_seconds": 15,
    },
    {
        "question_id": "q10",
        "text": "What is the maximum number of nodes on level L of a binary tree (root is level 0)?",
        "options": ["L", "2^L", "2L", "L^2"],
        "correct_answer_index": 1,
        "difficulty": "medium",
        "minimum_expected_time_seconds": 25,
    },
]


def sample_questions() -> List[Question]:
    """Fresh copies of the seed questions."""
    return [Question.model_validate(q) for q in SAMPLE_QUESTIONS]
