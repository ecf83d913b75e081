"""
Teacher directory.

Admins create profiles with a generated claim code; a teacher claims their profile
with that code and then maintains the self-editable fields. Students review teachers
(one review each); admins may hide reviews.
"""
