"""GraphQL documents used by the GitHub backend."""

PULL_REQUEST_METADATA_QUERY = """
query($repo: String!, $owner: String!, $number: Int!) {
  repository(name: $repo, owner: $owner) {
    pullRequest(number: $number) {
      id
      databaseId
      number
      url
      title
      body
      state
      isDraft
      headRefOid
      headRefName
      baseRefName
      createdAt
      updatedAt
      mergedAt
      reviewDecision
      author { login }
      milestone { title number state }
      labels(first: 50) {
        nodes { name color }
      }
      assignees(first: 20) {
        nodes { id login name }
      }
      reviewRequests(first: 20) {
        nodes {
          requestedReviewer {
            ... on User { id login name }
            ... on Team { id name }
          }
        }
      }
      latestOpinionatedReviews(first: 20) {
        nodes {
          state
          author { login }
        }
      }
      suggestedReviewers {
        reviewer { id login name }
      }
      projectCards(first: 10) {
        nodes {
          project { name }
          column { name }
        }
      }
      files(first: 100) {
        nodes { path additions deletions }
      }
      commits(first: 100) {
        totalCount
        nodes {
          commit {
            oid
            abbreviatedOid
            message
            committedDate
            author { name email }
          }
        }
      }
      reactionGroups {
        content
        users(first: 10) { nodes { login } }
      }
      comments(first: 100) {
        nodes {
          id
          databaseId
          body
          createdAt
          author { login }
          reactionGroups {
            content
            users(first: 10) { nodes { login } }
          }
        }
      }
      reviews(first: 100) {
        nodes {
          id
          databaseId
          state
          body
          createdAt
          author { login }
          comments(first: 100) {
            nodes {
              id
              databaseId
              path
              position
              originalPosition
              diffHunk
              body
              createdAt
              outdated
              author { login }
              replyTo { databaseId }
              reactionGroups {
                content
                users(first: 10) { nodes { login } }
              }
            }
          }
        }
      }
    }
  }
}
"""

ASSIGNABLE_USERS_QUERY = """
query($repo: String!, $owner: String!, $cursor: String) {
  repository(name: $repo, owner: $owner) {
    assignableUsers(first: 100, after: $cursor) {
      pageInfo {
        hasNextPage
        endCursor
      }
      nodes {
        id
        login
        name
      }
    }
  }
}
"""

REQUEST_REVIEWS_MUTATION = """
mutation($input: RequestReviewsInput!) {
  requestReviews(input: $input) {
    pullRequest {
      id
      reviewRequests(first: 20) {
        nodes {
          requestedReviewer {
            ... on User { login }
          }
        }
      }
    }
  }
}
"""
